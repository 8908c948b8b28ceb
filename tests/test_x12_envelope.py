"""Tests for the X12 envelope parser."""

import pytest

from edirouter.x12.envelope import X12ParseError, parse, parse_file, split_segments


def _isa(sep: str = "*", term: str = "~", rep: str = "^", comp: str = ":") -> str:
    elements = [
        "ISA", "00", " " * 10, "00", " " * 10,
        "ZZ", "SENDERID".ljust(15), "ZZ", "RECEIVERID".ljust(15),
        "250101", "1200", rep, "00501", "000000001", "0", "T", comp,
    ]
    return sep.join(elements) + term


def _interchange(sep: str = "*", term: str = "~", comp: str = ":") -> str:
    body = [
        f"GS{sep}PO{sep}SENDER{sep}RECEIVER{sep}20250101{sep}1200{sep}1{sep}X{sep}005010",
        f"ST{sep}850{sep}0001",
        f"BEG{sep}00{sep}SA{sep}PO123",
        f"SE{sep}3{sep}0001",
        f"ST{sep}850{sep}0002",
        f"SE{sep}2{sep}0002",
        f"GE{sep}2{sep}1",
        f"IEA{sep}1{sep}000000001",
    ]
    return _isa(sep=sep, term=term, comp=comp) + term.join(body) + term


# ------------------------------------------------------------------
# Delimiter discovery
# ------------------------------------------------------------------


class TestDelimiters:
    def test_standard_delimiters(self, sample_850):
        isa = parse(sample_850).isa
        assert isa.element_separator == "*"
        assert isa.segment_terminator == "~"
        assert isa.repetition_separator == "^"
        assert isa.component_separator == ":"

    @pytest.mark.parametrize(
        ("sep", "term", "comp"),
        [
            ("|", "!", ">"),
            ("+", "'", "\\"),
            ("\x1d", "\x1c", "\x1f"),
            ("*", "\n", ">"),
        ],
    )
    def test_arbitrary_delimiters(self, sep, term, comp):
        result = parse(_interchange(sep=sep, term=term, comp=comp))
        assert result.isa.element_separator == sep
        assert result.isa.segment_terminator == term
        assert result.isa.component_separator == comp
        assert [ts.control_number for ts in result.transaction_sets] == ["0001", "0002"]

    def test_crlf_terminator(self):
        result = parse(_interchange(term="\r\n"))
        assert result.isa.segment_terminator == "\r\n"
        assert result.isa.component_separator == ":"

    def test_tilde_and_crlf_give_same_envelope(self):
        tilde = parse(_interchange(term="~"))
        crlf = parse(_interchange(term="\r\n"))
        assert tilde.functional_groups == crlf.functional_groups
        assert tilde.isa.interchange_control_number == crlf.isa.interchange_control_number

    def test_tilde_with_trailing_newlines(self):
        edi = _interchange().replace("~", "~\n")
        result = parse(edi)
        assert result.isa.segment_terminator == "~"
        assert len(result.transaction_sets) == 2

    def test_empty_repetition_element_uses_default(self):
        result = parse(_isa(rep="") + "IEA*1*000000001~")
        assert result.isa.repetition_separator == "^"


# ------------------------------------------------------------------
# Envelope structure
# ------------------------------------------------------------------


class TestEnvelope:
    def test_one_group_two_transaction_sets(self, sample_850):
        result = parse(sample_850)
        assert len(result.functional_groups) == 1
        group = result.functional_groups[0]
        assert group.synthetic is False
        assert group.gs.functional_identifier_code == "PO"
        assert group.gs.group_control_number == "1"
        assert group.gs.version_release_industry_code == "005010"
        assert [(ts.identifier_code, ts.control_number) for ts in group.transaction_sets] == [
            ("850", "0001"),
            ("850", "0002"),
        ]
        assert [ts.index_in_interchange for ts in group.transaction_sets] == [0, 1]
        assert [ts.index_in_group for ts in group.transaction_sets] == [0, 1]

    def test_isa_fields(self, sample_850):
        isa = parse(sample_850).isa
        assert isa.sender_id == "SENDERID"
        assert isa.receiver_id == "RECEIVERID"
        assert isa.interchange_sender_id == "SENDERID".ljust(15)
        assert isa.interchange_control_version == "00501"
        assert isa.interchange_control_number == "000000001"
        assert isa.usage_indicator == "T"

    def test_document_type(self, sample_850):
        assert parse(sample_850).document_type == "850"

    def test_document_type_unknown_without_st(self):
        result = parse(_isa() + "GS*PO*A*B*20250101*1200*1*X*005010~GE*0*1~")
        assert result.document_type == "UNKNOWN"
        assert result.functional_groups[0].transaction_sets == []

    def test_multiple_groups_keep_interchange_index(self):
        edi = (
            _isa()
            + "GS*PO*A*B*20250101*1200*1*X*005010~ST*850*0001~SE*2*0001~GE*1*1~"
            + "GS*IN*A*B*20250101*1200*2*X*005010~ST*810*0002~ST*810*0003~GE*2*2~"
        )
        result = parse(edi)
        assert len(result.functional_groups) == 2
        second = result.functional_groups[1]
        assert second.gs.functional_identifier_code == "IN"
        assert [ts.index_in_interchange for ts in second.transaction_sets] == [1, 2]
        assert [ts.index_in_group for ts in second.transaction_sets] == [0, 1]

    def test_st_before_gs_synthesizes_group(self):
        result = parse(_isa() + "ST*856*0001~SE*2*0001~")
        assert len(result.functional_groups) == 1
        group = result.functional_groups[0]
        assert group.synthetic is True
        assert group.gs.functional_identifier_code is None
        assert group.transaction_sets[0].identifier_code == "856"
        assert result.document_type == "856"

    def test_empty_gs_elements_are_preserved(self):
        result = parse(_isa() + "GS*PO**RECEIVER~ST*850*0001~")
        gs = result.functional_groups[0].gs
        assert gs.functional_identifier_code == "PO"
        assert gs.application_sender_code == ""
        assert gs.application_receiver_code == "RECEIVER"
        assert gs.group_date is None

    def test_st_without_control_number(self):
        result = parse(_isa() + "GS*PO~ST*850~")
        ts = result.transaction_sets[0]
        assert ts.identifier_code == "850"
        assert ts.control_number is None

    def test_leading_garbage_before_isa(self, sample_850):
        result = parse("\ufeff\n" + sample_850)
        assert result.isa.sender_id == "SENDERID"

    def test_bytes_input(self, sample_850):
        result = parse(sample_850.encode("ascii"))
        assert result.document_type == "850"

    def test_undecodable_bytes_are_replaced(self, sample_850):
        data = sample_850.replace("BEG*00", "BEG*\xff").encode("latin-1")
        result = parse(data)
        assert len(result.transaction_sets) == 2

    def test_parse_file(self, tmp_path, sample_850):
        f = tmp_path / "850.edi"
        f.write_text(sample_850)
        assert parse_file(f).document_type == "850"

    def test_parse_file_missing(self, tmp_path):
        with pytest.raises(OSError):
            parse_file(tmp_path / "missing.edi")


# ------------------------------------------------------------------
# Malformed input
# ------------------------------------------------------------------


class TestMalformed:
    def test_no_isa(self):
        with pytest.raises(X12ParseError, match="No ISA segment found"):
            parse("GS*PO*A*B~ST*850*0001~")

    def test_empty_input(self):
        with pytest.raises(X12ParseError, match="No ISA"):
            parse("")

    def test_truncated_after_isa_tag(self):
        with pytest.raises(X12ParseError, match="Truncated after ISA"):
            parse("ISA")

    def test_too_few_elements(self):
        with pytest.raises(X12ParseError, match="expected 16 elements, found 2"):
            parse("ISA*00*01*02~")

    def test_no_terminator_after_isa16(self):
        edi = _isa(term="")
        with pytest.raises(X12ParseError, match="Unexpected end of input after ISA16"):
            parse(edi)

    def test_parse_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse("not edi at all")


# ------------------------------------------------------------------
# split_segments
# ------------------------------------------------------------------


class TestSplitSegments:
    def test_drops_blank_and_trims(self):
        assert split_segments("A*1~\n B*2 ~~\n", "~") == ["A*1", "B*2"]

    def test_keeps_unterminated_tail(self):
        assert split_segments("A*1~B*2", "~") == ["A*1", "B*2"]
