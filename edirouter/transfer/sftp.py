"""SFTP session built on ``paramiko``.

Host key verification is always explicit: the target either pins a
fingerprint or opts in to trusting unknown keys. Neither fails before a
socket is opened.
"""

import base64
import hashlib
import io
import logging
import stat
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

import paramiko
from paramiko.ssh_exception import AuthenticationException, NoValidConnectionsError, SSHException

from edirouter.schemas.transfer import TransferTarget
from edirouter.transfer.exceptions import (
    HostKeyPolicyError,
    RemoteFileExistsError,
    TransferAuthenticationError,
    TransferConfigurationError,
    TransferConnectionError,
    TransferProtocolError,
)
from edirouter.transfer.listing import RemoteEntry

logger = logging.getLogger(__name__)

# Tried in order when loading private key material
KEY_TYPES = (paramiko.RSAKey, paramiko.ECDSAKey, paramiko.Ed25519Key)


def sha256_fingerprint(key: paramiko.PKey) -> str:
    """OpenSSH-style ``SHA256:<base64>`` fingerprint, without padding."""
    digest = hashlib.sha256(key.asbytes()).digest()
    return "SHA256:" + base64.b64encode(digest).decode().rstrip("=")


def key_fingerprints(key: paramiko.PKey) -> set[str]:
    """Return the SHA256 and MD5 (colon hex) fingerprints of ``key``."""
    md5 = hashlib.md5(key.asbytes()).hexdigest()
    colon_hex = ":".join(md5[i : i + 2] for i in range(0, len(md5), 2))
    return {sha256_fingerprint(key), colon_hex, "MD5:" + colon_hex}


def normalize_fingerprint(fingerprint: str) -> str:
    fp = fingerprint.strip()
    if fp.lower().startswith("sha256:"):
        return "SHA256:" + fp[7:].rstrip("=")
    if fp.lower().startswith("md5:"):
        return "MD5:" + fp[4:].lower()
    return fp.lower()


class FingerprintPolicy(paramiko.MissingHostKeyPolicy):
    """Accept the server key only if it matches the pinned fingerprint."""

    def __init__(self, fingerprint: str) -> None:
        self.fingerprint = normalize_fingerprint(fingerprint)

    def missing_host_key(self, client, hostname, key) -> None:
        if self.fingerprint not in key_fingerprints(key):
            raise SSHException(
                f"Host key for {hostname} does not match pinned fingerprint {self.fingerprint}"
            )
        logger.debug("Host key for %s matches pinned fingerprint", hostname)


class TrustUnknownPolicy(paramiko.MissingHostKeyPolicy):
    """Accept any server key, logging a warning each time."""

    def missing_host_key(self, client, hostname, key) -> None:
        logger.warning(
            "SFTP: trusting unverified host key %s for %s (dev only)",
            sha256_fingerprint(key),
            hostname,
        )


def host_key_policy(target: TransferTarget) -> paramiko.MissingHostKeyPolicy:
    """Resolve the host key policy for ``target`` without any network I/O.

    Raises:
        HostKeyPolicyError: If neither a fingerprint nor trust-unknown is set.
    """
    if target.sftp_host_key_fingerprint and target.sftp_host_key_fingerprint.strip():
        return FingerprintPolicy(target.sftp_host_key_fingerprint)
    if target.sftp_trust_unknown_host_keys:
        return TrustUnknownPolicy()
    raise HostKeyPolicyError(
        "SFTP requires host key verification: set sftp_host_key_fingerprint "
        "or enable sftp_trust_unknown_host_keys (dev only).",
        target.host,
    )


def load_private_key(material: str | bytes, passphrase: str | None = None) -> paramiko.PKey:
    """Load PEM/OpenSSH key material, trying RSA, ECDSA then Ed25519."""
    text = material.decode() if isinstance(material, bytes) else material
    last_exc: Exception | None = None
    for key_type in KEY_TYPES:
        try:
            return key_type.from_private_key(io.StringIO(text), password=passphrase or None)
        except SSHException as exc:
            last_exc = exc
    raise TransferConfigurationError(f"Unsupported or invalid private key: {last_exc}")


class SFTPSession:
    """Connected, authenticated SFTP session.

    Usage::

        with SFTPSession(target) as sftp:
            sftp.makedirs("/outbound/")
            sftp.put(Path("850.edi"), "/outbound/850.edi")
    """

    def __init__(self, target: TransferTarget) -> None:
        self.target = target
        # Resolved first so a missing policy fails before connecting
        self._policy = host_key_policy(target)
        self._ssh: paramiko.SSHClient | None = None
        self._sftp: paramiko.SFTPClient | None = None

    def __enter__(self) -> "SFTPSession":
        try:
            self.connect()
        except BaseException:
            self.close()
            raise
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def connect(self) -> None:
        t = self.target
        port = t.effective_port
        connect_kwargs = {
            "hostname": t.host,
            "port": port,
            "username": t.username,
            "timeout": t.connection_timeout_ms / 1000,
            "banner_timeout": t.connection_timeout_ms / 1000,
            "auth_timeout": t.socket_timeout_ms / 1000,
            "look_for_keys": False,
            "allow_agent": False,
        }
        if t.private_key:
            logger.debug("Using private key authentication")
            connect_kwargs["pkey"] = load_private_key(t.private_key, t.private_key_passphrase)
        else:
            logger.debug("Using password authentication")
            connect_kwargs["password"] = t.password

        self._ssh = paramiko.SSHClient()
        self._ssh.set_missing_host_key_policy(self._policy)
        logger.info("Connecting (SFTP) to %s:%d", t.host, port)
        try:
            self._ssh.connect(**connect_kwargs)
            self._sftp = self._ssh.open_sftp()
        except AuthenticationException as exc:
            raise TransferAuthenticationError(
                f"Authentication failed for {t.username}@{t.host}: {exc}", t.host, t.username
            ) from exc
        except NoValidConnectionsError as exc:
            raise TransferConnectionError(f"Connection failed: {exc}", t.host, port) from exc
        except SSHException as exc:
            raise TransferConnectionError(f"SSH error: {exc}", t.host, port) from exc
        except OSError as exc:
            raise TransferConnectionError(f"Connection failed: {exc}", t.host, port) from exc

        self._sftp.get_channel().settimeout(t.socket_timeout_ms / 1000)

    def close(self) -> None:
        """Best-effort close of the SFTP channel and SSH transport."""
        for resource in (self._sftp, self._ssh):
            if resource is None:
                continue
            try:
                resource.close()
            except (OSError, SSHException) as exc:
                logger.debug("Error during SFTP disconnect: %s", exc)
        self._sftp = None
        self._ssh = None

    @property
    def client(self) -> paramiko.SFTPClient:
        if self._sftp is None:
            raise TransferConnectionError("Not connected to SFTP server", self.target.host)
        return self._sftp

    # ------------------------------------------------------------------
    # Directories
    # ------------------------------------------------------------------

    def makedirs(self, directory: str) -> None:
        """Create ``directory`` and any missing parents."""
        current = ""
        for part in directory.replace("\\", "/").split("/"):
            if not part.strip():
                continue
            current += "/" + part
            try:
                attrs = self.client.stat(current)
            except FileNotFoundError:
                try:
                    self.client.mkdir(current)
                except OSError as exc:
                    raise TransferProtocolError(
                        f"Failed to create SFTP directory: {current}", self.target.host, current
                    ) from exc
                logger.debug("Created SFTP directory %s", current)
                continue
            if attrs.st_mode is not None and not stat.S_ISDIR(attrs.st_mode):
                raise TransferProtocolError(
                    f"Remote path is not a directory: {current}", self.target.host, current
                )

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def ensure_absent(self, remote_path: str) -> None:
        """Raise unless a stat of ``remote_path`` reports "not found"."""
        try:
            self.client.stat(remote_path)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise TransferProtocolError(
                f"Could not check remote file {remote_path}: {exc}", self.target.host, remote_path
            ) from exc
        raise RemoteFileExistsError(
            f"Remote exists and overwrite=false: {remote_path}", self.target.host, remote_path
        )

    def put(self, local_file: Path, remote_path: str, *, overwrite: bool = True) -> None:
        if not overwrite:
            self.ensure_absent(remote_path)
        try:
            self.client.put(str(local_file), remote_path)
        except FileNotFoundError:
            if not Path(local_file).exists():
                raise
            raise TransferProtocolError(
                f"Remote directory missing for {remote_path}", self.target.host, remote_path
            )
        except (OSError, SSHException) as exc:
            raise TransferProtocolError(
                f"SFTP put failed for {remote_path}: {exc}", self.target.host, remote_path
            ) from exc

    def entries(self, directory: str) -> Iterator[RemoteEntry]:
        """Yield the entries of ``directory`` from ``listdir_attr``."""
        try:
            listing = self.client.listdir_attr(directory)
        except (OSError, SSHException) as exc:
            raise TransferProtocolError(
                f"SFTP listing failed for {directory}: {exc}", self.target.host, directory
            ) from exc

        for attrs in listing:
            mode = attrs.st_mode or 0
            is_dir = stat.S_ISDIR(mode)
            yield RemoteEntry(
                name=attrs.filename,
                is_dir=is_dir,
                is_file=stat.S_ISREG(mode),
                size=None if is_dir else attrs.st_size,
                modified=(
                    datetime.fromtimestamp(attrs.st_mtime, UTC) if attrs.st_mtime is not None else None
                ),
            )
