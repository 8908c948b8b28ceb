"""Outcome log for the ingest pipeline.

Every ``FileProcessedEvent`` the pipeline publishes becomes one JSON line,
which is what ``edirouter status`` reads back. A line torn by a crash
mid-write is skipped on read rather than hiding the rest of the history.
"""

import logging
import threading
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from edirouter.schemas.ingest import FileProcessedEvent

logger = logging.getLogger(__name__)


class ProcessedFileAuditLog:
    """JSONL record of archived and quarantined files.

    Usage::

        audit = ProcessedFileAuditLog(AUDIT_LOG_PATH)
        pipeline.events.subscribe(audit.log)
        failures = audit.read_entries(success=False, limit=5)
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Worker threads publish outcomes concurrently
        self._write_lock = threading.Lock()

    def log(self, event: FileProcessedEvent) -> None:
        line = event.model_dump_json()
        with self._write_lock, self.path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")
        logger.debug("Recorded %s outcome for %s", event.final_state, event.file_name)

    def _events(self) -> Iterator[FileProcessedEvent]:
        if not self.path.exists():
            return
        with self.path.open(encoding="utf-8") as f:
            for number, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    yield FileProcessedEvent.model_validate_json(line)
                except ValidationError as exc:
                    logger.warning("Skipping unreadable line %d of %s: %s", number, self.path, exc)

    def read_entries(
        self,
        *,
        since: datetime | None = None,
        success: bool | None = None,
        limit: int | None = None,
    ) -> list[FileProcessedEvent]:
        """Return recorded outcomes, oldest first.

        ``since`` keeps entries strictly after that instant, ``success`` keeps
        only archived (True) or failed (False) files, and ``limit`` keeps the
        newest N of what remains.
        """
        entries = [
            event
            for event in self._events()
            if (since is None or event.timestamp > since)
            and (success is None or event.success is success)
        ]
        return entries[-limit:] if limit is not None else entries
