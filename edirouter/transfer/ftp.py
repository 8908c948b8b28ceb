"""FTP session built on ``ftplib``.

One session per upload or listing: connect, log in, do the work, and always
attempt QUIT on the way out.
"""

import ftplib
import logging
import re
from datetime import UTC, datetime, timedelta
from pathlib import Path

from edirouter.schemas.transfer import TransferTarget
from edirouter.transfer.exceptions import (
    RemoteFileExistsError,
    TransferAuthenticationError,
    TransferConnectionError,
    TransferProtocolError,
)
from edirouter.transfer.listing import RemoteEntry

logger = logging.getLogger(__name__)

MLSD_FACTS = ["type", "size", "modify"]

# Replies meaning the server does not implement MLSD at all
MLSD_UNSUPPORTED = ("500", "502")

MONTHS = {
    name: number
    for number, name in enumerate(
        ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"], start=1
    )
}

# Unix-style LIST line: "-rw-r--r--   1 edi  edi   120 Jan 15 10:30 850.edi"
LIST_LINE = re.compile(
    r"^(?P<type>[-dlbcps])\S{9}\S*\s+\d+\s+\S+\s+(?:\S+\s+)?(?P<size>\d+)\s+"
    r"(?P<month>[A-Za-z]{3})\s+(?P<day>\d{1,2})\s+(?P<when>\d{1,2}:\d{2}|\d{4})\s+(?P<name>.+)$"
)


def parse_mlsd_time(value: str | None) -> datetime | None:
    """Parse an MLSD ``modify`` fact (``YYYYMMDDHHMMSS[.sss]``, UTC)."""
    if not value:
        return None
    try:
        fmt = "%Y%m%d%H%M%S.%f" if "." in value else "%Y%m%d%H%M%S"
        parsed = datetime.strptime(value, fmt).replace(tzinfo=UTC)
    except ValueError:
        logger.debug("Unparseable MLSD modify fact: %r", value)
        return None
    # Millisecond precision is what servers report
    return parsed.replace(microsecond=parsed.microsecond // 1000 * 1000)


def parse_list_line(line: str, now: datetime | None = None) -> RemoteEntry | None:
    """Parse one line of a Unix-style ``LIST`` reply.

    Returns None for lines that are not entries (``total 12``, blanks) or
    that use a format we do not understand. Times without a year belong to
    the most recent matching date not in the future; the server's clock zone
    is unknown, so they are taken as UTC.
    """
    match = LIST_LINE.match(line)
    if match is None:
        if line.strip() and not line.startswith("total"):
            logger.debug("Unparseable LIST line: %r", line)
        return None

    kind = match["type"]
    name = match["name"]
    if kind == "l":
        name = name.split(" -> ", 1)[0]
    if name in (".", ".."):
        return None

    now = now or datetime.now(UTC)
    month = MONTHS.get(match["month"].lower())
    modified = None
    if month is not None:
        try:
            if ":" in match["when"]:
                hour, minute = (int(part) for part in match["when"].split(":"))
                modified = datetime(now.year, month, int(match["day"]), hour, minute, tzinfo=UTC)
                if modified > now + timedelta(days=1):
                    modified = modified.replace(year=now.year - 1)
            else:
                modified = datetime(int(match["when"]), month, int(match["day"]), tzinfo=UTC)
        except ValueError:
            modified = None

    return RemoteEntry(
        name=name,
        is_dir=kind == "d",
        is_file=kind == "-",
        size=int(match["size"]),
        modified=modified,
    )


class FTPSession:
    """Connected, authenticated FTP control session.

    Usage::

        with FTPSession(target) as ftp:
            ftp.change_directory("/outbound/")
            ftp.store(Path("850.edi"), "850.edi")
    """

    def __init__(self, target: TransferTarget) -> None:
        self.target = target
        self._ftp = ftplib.FTP()
        self._use_mlsd = True

    def __enter__(self) -> "FTPSession":
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
        logger.info("Connecting (FTP) to %s:%d", t.host, port)
        try:
            self._ftp.connect(t.host, port, timeout=t.connection_timeout_ms / 1000)
        except (OSError, ftplib.Error) as exc:
            raise TransferConnectionError(f"FTP connection failed: {exc}", t.host, port) from exc

        # Control and data sockets use the socket timeout from here on
        self._ftp.timeout = t.socket_timeout_ms / 1000
        if self._ftp.sock is not None:
            self._ftp.sock.settimeout(self._ftp.timeout)

        try:
            self._ftp.login(t.username, t.password or "")
        except ftplib.error_perm as exc:
            raise TransferAuthenticationError(
                f"FTP login failed for user {t.username}: {exc}", t.host, t.username
            ) from exc

        self._ftp.set_pasv(t.ftp_passive_mode)
        try:
            self._ftp.voidcmd("TYPE I")
        except ftplib.Error as exc:
            raise TransferProtocolError(f"Could not switch to binary mode: {exc}", t.host) from exc

    def close(self) -> None:
        """Best-effort QUIT, then drop the socket."""
        if self._ftp.sock is None:
            return
        try:
            self._ftp.quit()
        except (OSError, ftplib.Error, EOFError) as exc:
            logger.debug("FTP quit failed: %s", exc)
            self._ftp.close()

    # ------------------------------------------------------------------
    # Directories
    # ------------------------------------------------------------------

    def ensure_directories(self, directory: str) -> None:
        """Create each segment of ``directory`` that the server cannot cwd into."""
        current = ""
        for part in directory.replace("\\", "/").split("/"):
            if not part.strip():
                continue
            current += "/" + part
            try:
                self._ftp.cwd(current)
            except ftplib.error_perm:
                try:
                    self._ftp.mkd(current)
                except ftplib.Error as exc:
                    raise TransferProtocolError(
                        f"Failed to create FTP directory: {current}", self.target.host, current
                    ) from exc
                logger.debug("Created FTP directory %s", current)

    def change_directory(self, directory: str) -> None:
        try:
            self._ftp.cwd(directory)
        except ftplib.Error as exc:
            raise TransferProtocolError(
                f"Could not change directory to {directory}", self.target.host, directory
            ) from exc

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def exists(self, name: str) -> bool:
        """True if ``name`` is a file in the current directory."""
        try:
            return self._ftp.size(name) is not None
        except ftplib.error_perm as exc:
            if str(exc).startswith("550"):
                return False
            # SIZE not supported: fall back to a name listing
            logger.debug("SIZE probe failed (%s), falling back to NLST", exc)
        try:
            return name in {n.rsplit("/", 1)[-1] for n in self._ftp.nlst()}
        except ftplib.error_perm:
            # Some servers answer 550 to NLST on an empty directory
            return False

    def store(self, local_file: Path, name: str, *, overwrite: bool = True) -> None:
        if not overwrite and self.exists(name):
            raise RemoteFileExistsError(
                f"Remote file exists and overwrite=false: {name}", self.target.host, name
            )
        with open(local_file, "rb") as fh:
            try:
                self._ftp.storbinary(f"STOR {name}", fh)
            except ftplib.Error as exc:
                raise TransferProtocolError(
                    f"FTP STOR failed for {name}: {exc}", self.target.host, name
                ) from exc

    def entries(self, directory: str) -> list[RemoteEntry]:
        """Return the entries of ``directory``.

        Uses MLSD, falling back to parsing ``LIST`` for the rest of the
        session once the server rejects MLSD as unknown.
        """
        if self._use_mlsd:
            try:
                return self._mlsd_entries(directory)
            except ftplib.error_perm as exc:
                if not str(exc).startswith(MLSD_UNSUPPORTED):
                    raise TransferProtocolError(
                        f"FTP listing failed for {directory}: {exc}", self.target.host, directory
                    ) from exc
                logger.debug("MLSD not supported (%s), falling back to LIST", exc)
                self._use_mlsd = False
        return self._list_entries(directory)

    def _mlsd_entries(self, directory: str) -> list[RemoteEntry]:
        try:
            listing = list(self._ftp.mlsd(directory, facts=MLSD_FACTS))
        except ftplib.error_perm:
            raise
        except ftplib.Error as exc:
            raise TransferProtocolError(
                f"FTP listing failed for {directory}: {exc}", self.target.host, directory
            ) from exc

        entries = []
        for name, facts in listing:
            kind = facts.get("type", "").lower()
            if kind in ("cdir", "pdir"):
                continue
            size = facts.get("size")
            entries.append(
                RemoteEntry(
                    name=name,
                    is_dir=kind == "dir",
                    is_file=kind == "file",
                    size=int(size) if size and size.isdigit() else None,
                    modified=parse_mlsd_time(facts.get("modify")),
                )
            )
        return entries

    def _list_entries(self, directory: str) -> list[RemoteEntry]:
        lines: list[str] = []
        try:
            self._ftp.dir(directory, lines.append)
        except ftplib.Error as exc:
            raise TransferProtocolError(
                f"FTP listing failed for {directory}: {exc}", self.target.host, directory
            ) from exc

        now = datetime.now(UTC)
        entries = (parse_list_line(line, now) for line in lines)
        return [entry for entry in entries if entry is not None]
