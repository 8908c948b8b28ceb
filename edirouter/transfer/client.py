"""Protocol-agnostic upload and listing over FTP or SFTP.

``upload`` always returns an ``UploadResult``; only an unsupported protocol
raises. ``list`` raises ``TransferError`` subclasses, since a partial listing
has no useful shape.
"""

from __future__ import annotations

import ftplib
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from paramiko.ssh_exception import SSHException

from edirouter.schemas.outcome import ErrorKind
from edirouter.schemas.transfer import (
    ListOptions,
    Protocol,
    RemoteFileInfo,
    TransferTarget,
    UploadResult,
    normalize_remote_dir,
)
from edirouter.transfer.exceptions import (
    TransferConnectionError,
    TransferError,
    TransferProtocolError,
    UnsupportedProtocolError,
)
from edirouter.transfer.ftp import FTPSession
from edirouter.transfer.listing import walk
from edirouter.transfer.sftp import SFTPSession

logger = logging.getLogger(__name__)


def _error_kind(exc: Exception) -> ErrorKind:
    if isinstance(exc, TransferError):
        return exc.kind
    if isinstance(exc, FileNotFoundError):
        # Local file missing
        return ErrorKind.IO
    if isinstance(exc, (ftplib.Error, SSHException)):
        return ErrorKind.PROTOCOL
    if isinstance(exc, (OSError, EOFError)):
        return ErrorKind.CONNECTION
    return ErrorKind.PROTOCOL


class TransferClient:
    """Upload files to, and list directories on, FTP/SFTP servers.

    Each call opens and closes its own session.

    Usage::

        client = TransferClient()
        result = client.upload(Path("850.edi"), target)
        files = client.list(target, ListOptions(recursive=True, glob="*.edi"))
    """

    def __init__(self) -> None:
        self._uploaders: dict[Protocol, Callable[[Path, TransferTarget, str], None]] = {
            Protocol.FTP: self._upload_ftp,
            Protocol.SFTP: self._upload_sftp,
        }
        self._listers: dict[Protocol, Callable[[TransferTarget, str, ListOptions], list[RemoteFileInfo]]] = {
            Protocol.FTP: self._list_ftp,
            Protocol.SFTP: self._list_sftp,
        }

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def upload(self, local_file: str | Path, target: TransferTarget) -> UploadResult:
        """Upload one local file.

        Raises:
            UnsupportedProtocolError: If ``target.protocol`` has no handler.
        """
        uploader = self._uploaders.get(target.protocol)
        if uploader is None:
            raise UnsupportedProtocolError(target.protocol)

        local_file = Path(local_file)
        start = time.monotonic()
        remote_path = target.remote_path_for(local_file)
        protocol = Protocol(target.protocol).value

        def failed(exc: Exception, kind: ErrorKind) -> UploadResult:
            logger.error(
                "Upload failed: file=%s, type=%s, host=%s, user=%s: %s",
                local_file,
                protocol,
                target.host,
                target.username,
                exc,
            )
            return UploadResult(
                success=False,
                protocol=protocol,
                host=target.host,
                remote_path=remote_path,
                duration_ms=int((time.monotonic() - start) * 1000),
                message=str(exc),
                error_kind=kind,
            )

        try:
            size = local_file.stat().st_size
            # Unreadable or non-regular local files fail before any connection
            with local_file.open("rb"):
                pass
        except OSError as exc:
            return failed(exc, ErrorKind.IO)

        try:
            uploader(local_file, target, remote_path)
        except Exception as exc:
            return failed(exc, _error_kind(exc))

        logger.info(
            "Uploaded %s via %s to %s:%s (%d bytes)",
            local_file.name,
            protocol,
            target.host,
            remote_path,
            size,
        )
        return UploadResult(
            success=True,
            protocol=protocol,
            host=target.host,
            remote_path=remote_path,
            bytes=size,
            duration_ms=int((time.monotonic() - start) * 1000),
            message=f"OK @ {datetime.now(UTC).isoformat()}",
        )

    def _upload_ftp(self, local_file: Path, target: TransferTarget, remote_path: str) -> None:
        directory = target.normalized_directory
        remote_name = remote_path.rsplit("/", 1)[-1]
        with FTPSession(target) as ftp:
            if target.create_directories:
                ftp.ensure_directories(directory)
            ftp.change_directory(directory)
            ftp.store(local_file, remote_name, overwrite=target.overwrite)

    def _upload_sftp(self, local_file: Path, target: TransferTarget, remote_path: str) -> None:
        with SFTPSession(target) as sftp:
            if target.create_directories:
                sftp.makedirs(target.normalized_directory)
            sftp.put(local_file, remote_path, overwrite=target.overwrite)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list(self, target: TransferTarget, options: ListOptions | None = None) -> list[RemoteFileInfo]:
        """List the remote directory tree described by ``options``.

        Raises:
            UnsupportedProtocolError: If ``target.protocol`` has no handler.
            TransferError: On connection, authentication or protocol failure.
        """
        options = options or ListOptions()
        lister = self._listers.get(target.protocol)
        if lister is None:
            raise UnsupportedProtocolError(target.protocol)

        root = normalize_remote_dir(options.directory or target.remote_directory or "/")
        try:
            files = lister(target, root, options)
        except TransferError:
            raise
        except (ftplib.Error, SSHException) as exc:
            raise TransferProtocolError(f"Listing {root} failed: {exc}", target.host, root) from exc
        except (OSError, EOFError) as exc:
            raise TransferConnectionError(
                f"Listing {root} failed: {exc}", target.host, target.effective_port
            ) from exc

        logger.info("Listed %d item(s) under %s on %s", len(files), root, target.host)
        return files

    list_directory = list

    def _list_ftp(self, target: TransferTarget, root: str, options: ListOptions) -> list[RemoteFileInfo]:
        with FTPSession(target) as ftp:
            return walk(
                ftp.entries,
                root,
                recursive=options.recursive,
                glob=options.glob,
                include_directories=options.include_directories,
            )

    def _list_sftp(self, target: TransferTarget, root: str, options: ListOptions) -> list[RemoteFileInfo]:
        with SFTPSession(target) as sftp:
            return walk(
                sftp.entries,
                root,
                recursive=options.recursive,
                glob=options.glob,
                include_directories=options.include_directories,
            )
