"""Schemas for the X12 envelope hierarchy.

Covers the three envelope levels the router cares about:
  ISA interchange -> GS functional group -> ST transaction set
"""

from pydantic import BaseModel, ConfigDict, Field


class ISA(BaseModel):
    """Interchange control header (ISA01..ISA16) plus the derived delimiters."""

    model_config = ConfigDict(frozen=True)

    authorization_information_qualifier: str  # ISA01
    authorization_information: str  # ISA02
    security_information_qualifier: str  # ISA03
    security_information: str  # ISA04
    interchange_id_qualifier_sender: str  # ISA05
    interchange_sender_id: str  # ISA06
    interchange_id_qualifier_receiver: str  # ISA07
    interchange_receiver_id: str  # ISA08
    interchange_date: str  # ISA09, YYMMDD
    interchange_time: str  # ISA10, HHMM
    repetition_separator_element: str  # ISA11
    interchange_control_version: str  # ISA12
    interchange_control_number: str  # ISA13
    acknowledgment_requested: str  # ISA14
    usage_indicator: str  # ISA15, T or P
    component_separator_element: str  # ISA16

    element_separator: str
    segment_terminator: str = Field(description='Single character, or "\\r\\n"')
    repetition_separator: str
    component_separator: str

    @property
    def sender_id(self) -> str:
        return self.interchange_sender_id.strip()

    @property
    def receiver_id(self) -> str:
        return self.interchange_receiver_id.strip()


class GS(BaseModel):
    """Functional group header (GS01..GS08).

    ``None`` means the element was absent; ``""`` means present but empty.
    """

    model_config = ConfigDict(frozen=True)

    functional_identifier_code: str | None = None  # PO, SH, IN, FA...
    application_sender_code: str | None = None
    application_receiver_code: str | None = None
    group_date: str | None = None  # CCYYMMDD
    group_time: str | None = None
    group_control_number: str | None = None
    responsible_agency_code: str | None = None
    version_release_industry_code: str | None = None  # e.g. 004010


class TransactionSet(BaseModel):
    """Transaction set header (ST01, ST02) with its position in the envelope."""

    model_config = ConfigDict(frozen=True)

    identifier_code: str | None = None  # 850, 856, 810...
    control_number: str | None = None
    index_in_interchange: int = Field(ge=0)
    index_in_group: int = Field(ge=0)


class FunctionalGroup(BaseModel):
    model_config = ConfigDict(frozen=True)

    gs: GS = Field(default_factory=GS)
    transaction_sets: list[TransactionSet] = Field(default_factory=list)
    synthetic: bool = Field(
        default=False,
        description="True when created to hold ST segments that precede any GS",
    )


class X12ParseResult(BaseModel):
    """One parsed interchange."""

    model_config = ConfigDict(frozen=True)

    isa: ISA
    functional_groups: list[FunctionalGroup] = Field(default_factory=list)

    @property
    def transaction_sets(self) -> list[TransactionSet]:
        return [ts for group in self.functional_groups for ts in group.transaction_sets]

    @property
    def document_type(self) -> str:
        """ST01 of the first transaction set, or ``UNKNOWN``."""
        for ts in self.transaction_sets:
            if ts.identifier_code:
                return ts.identifier_code
        return "UNKNOWN"
