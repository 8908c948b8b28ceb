"""Moves dropped EDI files through the managed directories.

  incoming -> processing -> archive   (envelope parsed)
                         -> errors    (anything failed after the claim)

A file that cannot be claimed into ``processing`` stays in ``incoming``.
Moves are atomic renames with a bounded number of retries.
"""

import logging
import os
import threading
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from edirouter.ingest.events import EventChannel
from edirouter.schemas.ingest import (
    TRANSITIONS,
    FileProcessedEvent,
    IngestSettings,
    ProcessingState,
)
from edirouter.schemas.outcome import ErrorKind
from edirouter.x12.envelope import X12ParseError, parse

logger = logging.getLogger(__name__)

ERROR_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


class IngestError(Exception):
    """Base class for pipeline failures."""

    kind = ErrorKind.IO


class IngestSetupError(IngestError):
    """The managed directories could not be created."""

    kind = ErrorKind.CONFIGURATION


class MoveFailedError(IngestError):
    """A move still failed after every retry attempt."""

    def __init__(self, message: str, source: Path, destination: Path, attempts: int) -> None:
        super().__init__(message)
        self.source = source
        self.destination = destination
        self.attempts = attempts


class IngestInterrupted(IngestError):
    """Cancellation was requested while waiting between move attempts."""

    kind = ErrorKind.INTERRUPTED


class FileSystem(Protocol):
    """The filesystem operations the pipeline needs."""

    def move(self, source: Path, destination: Path) -> None: ...

    def makedirs(self, path: Path) -> None: ...

    def read_bytes(self, path: Path) -> bytes: ...

    def write_text(self, path: Path, text: str) -> None: ...

    def exists(self, path: Path) -> bool: ...


class LocalFileSystem:
    def move(self, source: Path, destination: Path) -> None:
        # Atomic within one filesystem and replaces an existing destination.
        os.replace(source, destination)

    def makedirs(self, path: Path) -> None:
        path.mkdir(parents=True, exist_ok=True)

    def read_bytes(self, path: Path) -> bytes:
        return path.read_bytes()

    def write_text(self, path: Path, text: str) -> None:
        path.write_text(text, encoding="utf-8")

    def exists(self, path: Path) -> bool:
        return path.exists()


def error_file_names(file_name: str, now: datetime) -> tuple[str, str]:
    """Return the quarantined file name and its companion log name.

    ``850.edi`` becomes ``850_ERROR_20250101_120000.edi`` and
    ``850_ERROR_20250101_120000.log``.
    """
    stem, dot, ext = file_name.rpartition(".")
    if not dot:
        stem, ext = file_name, ""
    else:
        ext = "." + ext
    base = f"{stem}_ERROR_{now.strftime(ERROR_TIMESTAMP_FORMAT)}"
    return base + ext, base + ".log"


class IngestionPipeline:
    """Claim, parse and route a single file.

    Usage::

        pipeline = IngestionPipeline(settings)
        pipeline.events.subscribe(audit_log.log)
        ok = pipeline.process(Path("/data/edi/incoming/850.edi"))
    """

    def __init__(
        self,
        settings: IngestSettings,
        *,
        fs: FileSystem | None = None,
        events: EventChannel[FileProcessedEvent] | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self.settings = settings
        self.fs = fs or LocalFileSystem()
        self.events = events if events is not None else EventChannel()
        self._cancel = cancel or threading.Event()
        self._processed = 0
        self._counter_lock = threading.Lock()

    @property
    def total_processed(self) -> int:
        with self._counter_lock:
            return self._processed

    def cancel(self) -> None:
        """Abort retry waits in progress and future ones."""
        self._cancel.set()

    def reset_cancel(self) -> None:
        """Allow retry waits again after a ``cancel``."""
        self._cancel.clear()

    def ensure_directories(self) -> None:
        """Create the four managed directories.

        Raises:
            IngestSetupError: If any directory cannot be created.
        """
        logger.info("Creating directory structure under: %s", self.settings.base_directory)
        try:
            for directory in self.settings.managed_directories():
                self.fs.makedirs(directory)
        except OSError as exc:
            logger.error("Failed to create directory structure: %s", exc)
            raise IngestSetupError(f"Cannot initialize ingest directories: {exc}") from exc
        for state in ProcessingState:
            logger.info("  %-10s %s", state.value, self.settings.directory_for(state))

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process(self, source: Path) -> bool:
        """Move ``source`` through the pipeline. Returns True when archived.

        Never raises for processing failures; the outcome is reported through
        the return value and a ``FileProcessedEvent``. ``IngestInterrupted``
        is re-raised after the file has been routed and the event published.
        """
        source = Path(source)
        file_name = source.name
        details: dict = {}
        logger.info("Started processing file %s", file_name)

        try:
            claimed = self.transition(source, ProcessingState.INCOMING, ProcessingState.PROCESSING)
        except IngestError as exc:
            logger.error("Could not claim %s, leaving it in place: %s", file_name, exc)
            self._publish(
                file_name,
                success=False,
                state=ProcessingState.INCOMING,
                destination=source,
                kind=exc.kind,
                message=str(exc),
            )
            if isinstance(exc, IngestInterrupted):
                raise
            return False

        interrupted: IngestInterrupted | None = None
        try:
            result = parse(self.fs.read_bytes(claimed))
            details = {
                "document_type": result.document_type,
                "sender_id": result.isa.sender_id,
                "receiver_id": result.isa.receiver_id,
            }
            logger.info(
                "Processed file %s, Type: %s, Sender: %s, Receiver: %s",
                file_name,
                details["document_type"],
                details["sender_id"],
                details["receiver_id"],
            )
            archived = self.transition(claimed, ProcessingState.PROCESSING, ProcessingState.ARCHIVED)
        except Exception as exc:
            if isinstance(exc, X12ParseError):
                kind = ErrorKind.PARSE
                logger.error("Error processing file %s: %s", file_name, exc)
            elif isinstance(exc, (IngestError, OSError)):
                kind = exc.kind if isinstance(exc, IngestError) else ErrorKind.IO
                logger.error("Error processing file %s: %s", file_name, exc)
            else:
                kind = ErrorKind.IO
                logger.exception("Unexpected error processing file %s", file_name)
            if isinstance(exc, IngestInterrupted):
                interrupted = exc
            destination = self._quarantine(claimed, file_name, str(exc))
            self._publish(
                file_name,
                success=False,
                state=ProcessingState.ERRORED if destination else ProcessingState.PROCESSING,
                destination=destination or claimed,
                kind=kind,
                message=str(exc),
                **details,
            )
            if interrupted is not None:
                raise interrupted
            return False

        logger.info("Successfully processed file %s", file_name)
        self._publish(
            file_name,
            success=True,
            state=ProcessingState.ARCHIVED,
            destination=archived,
            **details,
        )
        return True

    def transition(
        self,
        path: Path,
        current: ProcessingState,
        target: ProcessingState,
        *,
        name: str | None = None,
        cancellable: bool = True,
    ) -> Path:
        """Move ``path`` from one managed directory to another."""
        if target not in TRANSITIONS[current]:
            raise ValueError(f"Illegal transition {current} -> {target}")
        destination = self.settings.directory_for(target) / (name or path.name)
        return self.move_with_retry(path, destination, cancellable=cancellable)

    def move_with_retry(self, source: Path, destination: Path, *, cancellable: bool = True) -> Path:
        """Atomically move ``source`` to ``destination``, replacing any existing file.

        Raises:
            MoveFailedError: After ``retry_attempts`` failed attempts; chained
                to the last ``OSError``.
            IngestInterrupted: If cancelled while waiting between attempts.
        """
        attempts = self.settings.retry_attempts
        delay = self.settings.retry_delay_ms / 1000
        try:
            self.fs.makedirs(destination.parent)
        except OSError as exc:
            raise MoveFailedError(
                f"Cannot create {destination.parent}: {exc}", source, destination, 0
            ) from exc

        last_exc: OSError | None = None
        for attempt in range(1, attempts + 1):
            try:
                self.fs.move(source, destination)
                return destination
            except OSError as exc:
                last_exc = exc
                logger.warning("Attempt %d to move file %s failed: %s", attempt, source, exc)

            if attempt < attempts:
                if cancellable:
                    if self._cancel.wait(delay):
                        raise IngestInterrupted(f"Move of {source} interrupted") from last_exc
                else:
                    time.sleep(delay)

        raise MoveFailedError(
            f"Failed to move file after {attempts} attempts: {last_exc}",
            source,
            destination,
            attempts,
        ) from last_exc

    def _quarantine(self, claimed: Path, file_name: str, reason: str) -> Path | None:
        """Move a claimed file to the error directory and write its ``.log``.

        Returns the quarantined path, or None if the file could not be moved.
        """
        now = datetime.now()
        error_name, log_name = error_file_names(file_name, now)
        try:
            target = self.transition(
                claimed,
                ProcessingState.PROCESSING,
                ProcessingState.ERRORED,
                name=error_name,
                cancellable=False,
            )
        except IngestError as exc:
            logger.error("Failed to move error file %s: %s", claimed, exc)
            return None

        log_text = f"File: {file_name}\nTimestamp: {now.isoformat()}\nError: {reason}\n"
        try:
            self.fs.write_text(self.settings.error_path / log_name, log_text)
        except OSError as exc:
            logger.error("Failed to write error log for %s: %s", file_name, exc)
        return target

    def _publish(
        self,
        file_name: str,
        *,
        success: bool,
        state: ProcessingState,
        destination: Path,
        kind: ErrorKind | None = None,
        message: str = "",
        document_type: str = "",
        sender_id: str = "",
        receiver_id: str = "",
    ) -> FileProcessedEvent:
        with self._counter_lock:
            self._processed += 1
            total = self._processed
        event = FileProcessedEvent(
            timestamp=datetime.now(UTC),
            file_name=file_name,
            success=success,
            total_processed=total,
            final_state=state,
            destination=str(destination),
            error_kind=kind,
            error_message=message,
            document_type=document_type,
            sender_id=sender_id,
            receiver_id=receiver_id,
        )
        self.events.publish(event)
        return event
