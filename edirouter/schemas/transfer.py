"""Schemas for FTP/SFTP transfers and remote listings."""

from datetime import datetime
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from edirouter.schemas.outcome import ErrorKind


class Protocol(StrEnum):
    FTP = "FTP"
    SFTP = "SFTP"

    @property
    def default_port(self) -> int:
        return 21 if self is Protocol.FTP else 22


def normalize_remote_dir(path: str | None) -> str:
    """Return ``path`` with forward slashes, starting and ending with ``/``."""
    if not path or not path.strip():
        return "/"
    d = path.strip().replace("\\", "/")
    if not d.startswith("/"):
        d = "/" + d
    if not d.endswith("/"):
        d += "/"
    return d


class TransferTarget(BaseModel):
    """Where and how to connect for an upload or listing."""

    model_config = ConfigDict(frozen=True)

    protocol: Protocol
    host: str
    port: int = Field(default=-1, description="<= 0 means the protocol default")
    username: str = ""
    password: str | None = None

    private_key: str | bytes | None = Field(default=None, description="PEM key material")
    private_key_passphrase: str | None = None

    remote_directory: str | None = None
    remote_filename: str | None = None

    create_directories: bool = True
    overwrite: bool = True

    # FTP only
    ftp_passive_mode: bool = True

    connection_timeout_ms: int = Field(default=15000, gt=0)
    socket_timeout_ms: int = Field(default=30000, gt=0)

    # SFTP host key verification: one of these is required
    sftp_host_key_fingerprint: str | None = None
    sftp_trust_unknown_host_keys: bool = False

    @property
    def effective_port(self) -> int:
        return self.port if self.port > 0 else Protocol(self.protocol).default_port

    @property
    def normalized_directory(self) -> str:
        return normalize_remote_dir(self.remote_directory)

    def remote_name_for(self, local_file: str | Path) -> str:
        if self.remote_filename and self.remote_filename.strip():
            return self.remote_filename.strip()
        return Path(local_file).name

    def remote_path_for(self, local_file: str | Path) -> str:
        return self.normalized_directory + self.remote_name_for(local_file)


class ListOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    directory: str | None = Field(default=None, description="Overrides the target directory")
    recursive: bool = False
    glob: str | None = Field(default=None, description='e.g. "*.edi"; None matches all')
    include_directories: bool = False


class RemoteFileInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    directory: bool = False
    size_bytes: int | None = None
    modified: datetime | None = None

    @property
    def name(self) -> str:
        return self.path.rstrip("/").rsplit("/", 1)[-1]


class UploadResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    protocol: str
    host: str
    remote_path: str
    bytes: int = Field(default=0, ge=0)
    duration_ms: int = Field(default=0, ge=0)
    message: str = ""
    error_kind: ErrorKind | None = None
