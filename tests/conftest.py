"""Shared fixtures for EDI router tests."""

import pytest

from edirouter.schemas.ingest import IngestSettings

SAMPLE_850 = (
    "ISA*00*          *00*          *ZZ*SENDERID       *ZZ*RECEIVERID     "
    "*250101*1200*^*00501*000000001*0*T*:~"
    "GS*PO*SENDER*RECEIVER*20250101*1200*1*X*005010~"
    "ST*850*0001~BEG*00*SA*PO123**20250101~SE*3*0001~"
    "ST*850*0002~BEG*00*SA*PO124**20250101~SE*3*0002~"
    "GE*2*1~IEA*1*000000001~"
)


@pytest.fixture(autouse=True)
def _no_sops(monkeypatch):
    """Ensure tests never try to invoke SOPS."""
    monkeypatch.setenv("EDIROUTER_USE_SOPS", "false")


@pytest.fixture()
def settings(tmp_path):
    """Ingest settings rooted in a temp dir with no settle or retry delays."""
    return IngestSettings(base_directory=tmp_path / "edi", retry_delay_ms=0, settle_delay_ms=0)


@pytest.fixture()
def sample_850():
    return SAMPLE_850
