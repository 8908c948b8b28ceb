"""Single source of truth for all configuration.

All modules import from here, never from os.environ directly.

Values come from secrets/internal.env (or secrets/internal.env.enc when
EDIROUTER_USE_SOPS=true), overridden by EDIROUTER_* environment variables.
"""

import os
from pathlib import Path

from edirouter.schemas.ingest import IngestSettings
from edirouter.secrets import load_dotenv_fallback, load_secrets, with_environment

PROJECT_ROOT = Path(__file__).resolve().parent.parent

USE_SOPS = os.environ.get("EDIROUTER_USE_SOPS", "false").lower() == "true"


def _load(scope: str) -> dict[str, str | None]:
    """Load settings for a given scope, then apply environment overrides."""
    if USE_SOPS:
        values = load_secrets(PROJECT_ROOT / f"secrets/{scope}.env.enc")
    else:
        values = load_dotenv_fallback(PROJECT_ROOT / f"secrets/{scope}.env")
    return with_environment(values)


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


_internal = _load("internal")

# --- Drop folder layout ---
BASE_DIR: str = _internal.get("EDIROUTER_BASE_DIR") or str(PROJECT_ROOT / "data" / "edi")
INCOMING_DIR: str = _internal.get("EDIROUTER_INCOMING_DIR") or "incoming"
PROCESSING_DIR: str = _internal.get("EDIROUTER_PROCESSING_DIR") or "processing"
ARCHIVE_DIR: str = _internal.get("EDIROUTER_ARCHIVE_DIR") or "archive"
ERROR_DIR: str = _internal.get("EDIROUTER_ERROR_DIR") or "errors"

# --- Move retries ---
RETRY_ATTEMPTS: int = int(_internal.get("EDIROUTER_RETRY_ATTEMPTS") or "3")
RETRY_DELAY_MS: int = int(_internal.get("EDIROUTER_RETRY_DELAY_MS") or "1000")

# --- Watcher ---
SETTLE_DELAY_MS: int = int(_internal.get("EDIROUTER_SETTLE_DELAY_MS") or "500")
POLL_INTERVAL_MS: int = int(_internal.get("EDIROUTER_POLL_INTERVAL_MS") or "5000")
USE_POLLING: bool = _flag(_internal.get("EDIROUTER_USE_POLLING"))
MAX_WORKERS: int = int(_internal.get("EDIROUTER_MAX_WORKERS") or "4")
MAX_PENDING: int = int(_internal.get("EDIROUTER_MAX_PENDING") or "64")

AUDIT_LOG_PATH: str = _internal.get("EDIROUTER_AUDIT_LOG_PATH") or str(
    PROJECT_ROOT / "data" / "ingest_audit.jsonl"
)


def ingest_settings(base_dir: str | None = None, *, use_polling: bool | None = None) -> IngestSettings:
    """Build ``IngestSettings`` from the loaded configuration."""
    return IngestSettings(
        base_directory=Path(base_dir or BASE_DIR),
        incoming_directory=INCOMING_DIR,
        processing_directory=PROCESSING_DIR,
        archive_directory=ARCHIVE_DIR,
        error_directory=ERROR_DIR,
        retry_attempts=RETRY_ATTEMPTS,
        retry_delay_ms=RETRY_DELAY_MS,
        settle_delay_ms=SETTLE_DELAY_MS,
        poll_interval_ms=POLL_INTERVAL_MS,
        use_polling=USE_POLLING if use_polling is None else use_polling,
        max_workers=MAX_WORKERS,
        max_pending=MAX_PENDING,
    )

