"""Schemas for the drop-folder ingest pipeline.

A file's processing state is the managed directory it sits in:
  incoming -> processing -> archived | errored
"""

from datetime import datetime
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from edirouter.schemas.outcome import ErrorKind


class ProcessingState(StrEnum):
    INCOMING = "incoming"
    PROCESSING = "processing"
    ARCHIVED = "archived"
    ERRORED = "errored"

    @property
    def terminal(self) -> bool:
        return self in (ProcessingState.ARCHIVED, ProcessingState.ERRORED)


# Legal moves between managed directories
TRANSITIONS: dict[ProcessingState, frozenset[ProcessingState]] = {
    ProcessingState.INCOMING: frozenset({ProcessingState.PROCESSING}),
    ProcessingState.PROCESSING: frozenset({ProcessingState.ARCHIVED, ProcessingState.ERRORED}),
    ProcessingState.ARCHIVED: frozenset(),
    ProcessingState.ERRORED: frozenset(),
}


class IngestSettings(BaseModel):
    """Directory layout, retry policy and watcher tuning."""

    model_config = ConfigDict(frozen=True)

    base_directory: Path
    incoming_directory: str = "incoming"
    processing_directory: str = "processing"
    archive_directory: str = "archive"
    error_directory: str = "errors"

    retry_attempts: int = Field(default=3, ge=1)
    retry_delay_ms: int = Field(default=1000, ge=0)

    settle_delay_ms: int = Field(default=500, ge=0, description="Wait before dispatching an event")
    poll_interval_ms: int = Field(default=5000, gt=0, description="PollingObserver interval")
    use_polling: bool = False
    max_workers: int = Field(default=4, ge=1)
    max_pending: int = Field(default=64, ge=1, description="Outstanding work items and queued events")

    @property
    def incoming_path(self) -> Path:
        return self.base_directory / self.incoming_directory

    @property
    def processing_path(self) -> Path:
        return self.base_directory / self.processing_directory

    @property
    def archive_path(self) -> Path:
        return self.base_directory / self.archive_directory

    @property
    def error_path(self) -> Path:
        return self.base_directory / self.error_directory

    def directory_for(self, state: ProcessingState) -> Path:
        return {
            ProcessingState.INCOMING: self.incoming_path,
            ProcessingState.PROCESSING: self.processing_path,
            ProcessingState.ARCHIVED: self.archive_path,
            ProcessingState.ERRORED: self.error_path,
        }[state]

    def managed_directories(self) -> list[Path]:
        return [self.directory_for(state) for state in ProcessingState]


class FileProcessedEvent(BaseModel):
    """Published once per ``IngestionPipeline.process`` call."""

    timestamp: datetime
    file_name: str
    success: bool
    total_processed: int = Field(ge=1)
    final_state: ProcessingState
    destination: str = Field(default="", description="Final path of the file")
    error_kind: ErrorKind | None = None
    error_message: str = ""
    document_type: str = ""
    sender_id: str = ""
    receiver_id: str = ""
