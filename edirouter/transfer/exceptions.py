"""
Exceptions for FTP/SFTP transfer operations.

Each exception carries an ``ErrorKind`` so ``TransferClient.upload`` can
report what went wrong without the caller catching protocol-specific types.
"""

from edirouter.schemas.outcome import ErrorKind


class TransferError(Exception):
    """Base exception for transfer operations."""

    kind = ErrorKind.PROTOCOL

    def __init__(self, message: str, host: str | None = None):
        super().__init__(message)
        self.host = host


class TransferConnectionError(TransferError):
    """Raised when the server cannot be reached or the session drops."""

    kind = ErrorKind.CONNECTION

    def __init__(self, message: str, host: str | None = None, port: int | None = None):
        super().__init__(message, host)
        self.port = port


class TransferAuthenticationError(TransferError):
    """Raised when login or key authentication is rejected."""

    kind = ErrorKind.AUTHENTICATION

    def __init__(self, message: str, host: str | None = None, username: str | None = None):
        super().__init__(message, host)
        self.username = username


class TransferProtocolError(TransferError):
    """Raised when the server refuses a command (cwd, mkdir, store, list)."""

    def __init__(self, message: str, host: str | None = None, path: str | None = None):
        super().__init__(message, host)
        self.path = path


class RemoteFileExistsError(TransferProtocolError):
    """Raised when ``overwrite=False`` and the remote file is already there."""


class TransferConfigurationError(TransferError, ValueError):
    """Raised before any I/O when the target cannot be used as configured."""

    kind = ErrorKind.CONFIGURATION


class HostKeyPolicyError(TransferConfigurationError):
    """SFTP target has neither a host key fingerprint nor trust-unknown set."""


class UnsupportedProtocolError(TransferConfigurationError):
    """The target's protocol tag has no handler."""

    def __init__(self, protocol: object):
        super().__init__(f"Unsupported protocol: {protocol}")
        self.protocol = protocol
