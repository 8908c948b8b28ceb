"""Outcome classification shared by the ingest pipeline and transfer client."""

from enum import StrEnum


class ErrorKind(StrEnum):
    """Why an operation failed.

    ``IO`` failures are worth retrying later; the rest need a change to the
    input, the remote side, or the caller's configuration.
    """

    IO = "io"
    PARSE = "parse"
    CONNECTION = "connection"
    AUTHENTICATION = "authentication"
    PROTOCOL = "protocol"
    CONFIGURATION = "configuration"
    INTERRUPTED = "interrupted"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.IO, ErrorKind.CONNECTION)
