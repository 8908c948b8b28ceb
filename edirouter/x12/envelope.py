"""X12 envelope parser.

Reads the ISA header to learn the delimiters the sender used, then walks the
document collecting GS and ST headers. Nothing past the envelope is
interpreted: segment content below ST is skipped.

Delimiters are never configured. The element separator is the character
right after ``ISA``; the segment terminator is the character right after
ISA16; ISA11 and ISA16 give the repetition and component separators.
"""

import logging
from pathlib import Path

from edirouter.schemas.x12 import GS, ISA, FunctionalGroup, TransactionSet, X12ParseResult

logger = logging.getLogger(__name__)

ISA_TAG = "ISA"
ISA_ELEMENT_COUNT = 16

# Candidates for the end of ISA16 before the real terminator is known
LIKELY_TERMINATORS = ("~", "\n", "\r")

DEFAULT_REPETITION_SEPARATOR = "^"
DEFAULT_COMPONENT_SEPARATOR = ":"


class X12ParseError(ValueError):
    """The input is not a structurally usable X12 interchange."""


def parse(edi: str | bytes) -> X12ParseResult:
    """Parse the first interchange in ``edi``.

    Raises:
        X12ParseError: If no ISA is present, ISA has fewer than 16 elements,
            or the input ends before the segment terminator.
    """
    if isinstance(edi, bytes):
        edi = edi.decode("utf-8", errors="replace")

    isa_idx = edi.find(ISA_TAG)
    if isa_idx < 0:
        raise X12ParseError("No ISA segment found")
    if isa_idx + len(ISA_TAG) >= len(edi):
        raise X12ParseError("Truncated after ISA")

    element_sep = edi[isa_idx + len(ISA_TAG)]
    fields, cursor = _read_isa_elements(edi, isa_idx + len(ISA_TAG) + 1, element_sep)

    if cursor >= len(edi):
        raise X12ParseError("Unexpected end of input after ISA16")
    segment_term = edi[cursor]
    if segment_term == "\r" and edi[cursor + 1 : cursor + 2] == "\n":
        segment_term = "\r\n"

    isa = _build_isa(fields, element_sep, segment_term)
    groups = _collect_groups(split_segments(edi, segment_term), element_sep)

    logger.debug(
        "Parsed interchange %s: %d group(s), sep=%r term=%r",
        isa.interchange_control_number,
        len(groups),
        element_sep,
        segment_term,
    )
    return X12ParseResult(isa=isa, functional_groups=groups)


def parse_file(path: str | Path) -> X12ParseResult:
    """Read and parse a file. I/O failures propagate as ``OSError``."""
    return parse(Path(path).read_bytes())


def _read_isa_elements(edi: str, cursor: int, element_sep: str) -> tuple[list[str], int]:
    """Collect ISA01..ISA16 starting at ``cursor``.

    Returns the elements and the index of the character after ISA16.
    """
    fields: list[str] = []
    for i in range(ISA_ELEMENT_COUNT - 1):
        next_sep = edi.find(element_sep, cursor)
        if next_sep < 0:
            raise X12ParseError(
                f"Invalid ISA: expected {ISA_ELEMENT_COUNT} elements, found {i}"
            )
        fields.append(edi[cursor:next_sep])
        cursor = next_sep + 1

    # ISA16 is not split on the element separator; it runs to the terminator.
    seg_end = _find_segment_end(edi, cursor)
    if seg_end - cursor > 1:
        # Fixed-width layout: ISA16 is one character and the terminator follows.
        seg_end = min(cursor + 1, len(edi))
    fields.append(edi[cursor:seg_end])
    return fields, seg_end


def _find_segment_end(edi: str, start: int) -> int:
    hits = [idx for idx in (edi.find(t, start) for t in LIKELY_TERMINATORS) if idx >= 0]
    return min(hits) if hits else len(edi)


def _build_isa(fields: list[str], element_sep: str, segment_term: str) -> ISA:
    if len(fields) != ISA_ELEMENT_COUNT:
        raise X12ParseError(
            f"Invalid ISA: expected {ISA_ELEMENT_COUNT} elements, found {len(fields)}"
        )
    return ISA(
        authorization_information_qualifier=fields[0],
        authorization_information=fields[1],
        security_information_qualifier=fields[2],
        security_information=fields[3],
        interchange_id_qualifier_sender=fields[4],
        interchange_sender_id=fields[5],
        interchange_id_qualifier_receiver=fields[6],
        interchange_receiver_id=fields[7],
        interchange_date=fields[8],
        interchange_time=fields[9],
        repetition_separator_element=fields[10],
        interchange_control_version=fields[11],
        interchange_control_number=fields[12],
        acknowledgment_requested=fields[13],
        usage_indicator=fields[14],
        component_separator_element=fields[15],
        element_separator=element_sep,
        segment_terminator=segment_term,
        repetition_separator=fields[10][:1] or DEFAULT_REPETITION_SEPARATOR,
        component_separator=fields[15][:1] or DEFAULT_COMPONENT_SEPARATOR,
    )


def split_segments(edi: str, segment_term: str) -> list[str]:
    """Split on the terminator, trimming each segment and dropping blank ones.

    An unterminated trailing segment is kept.
    """
    segments = [seg.strip() for seg in edi.split(segment_term)]
    return [seg for seg in segments if seg]


def _collect_groups(segments: list[str], element_sep: str) -> list[FunctionalGroup]:
    # Groups are assembled as plain dicts and frozen once complete.
    groups: list[dict] = []
    current: dict | None = None
    st_index = 0

    for seg in segments:
        # str.split keeps empty elements, including trailing ones
        parts = seg.split(element_sep)
        tag = parts[0]

        if tag == "GS":
            current = {"gs": _build_gs(parts), "transaction_sets": [], "synthetic": False}
            groups.append(current)
        elif tag == "ST":
            if current is None:
                logger.debug("ST segment before any GS; synthesizing a group")
                current = {"gs": GS(), "transaction_sets": [], "synthetic": True}
                groups.append(current)
            current["transaction_sets"].append(
                TransactionSet(
                    identifier_code=_element(parts, 1),
                    control_number=_element(parts, 2),
                    index_in_interchange=st_index,
                    index_in_group=len(current["transaction_sets"]),
                )
            )
            st_index += 1

    return [FunctionalGroup(**g) for g in groups]


def _build_gs(parts: list[str]) -> GS:
    return GS(
        functional_identifier_code=_element(parts, 1),
        application_sender_code=_element(parts, 2),
        application_receiver_code=_element(parts, 3),
        group_date=_element(parts, 4),
        group_time=_element(parts, 5),
        group_control_number=_element(parts, 6),
        responsible_agency_code=_element(parts, 7),
        version_release_industry_code=_element(parts, 8),
    )


def _element(parts: list[str], index: int) -> str | None:
    return parts[index] if index < len(parts) else None
