"""Protocol-neutral remote directory walking and glob filtering."""

import re
from collections.abc import Callable, Iterable
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from edirouter.schemas.transfer import RemoteFileInfo


class RemoteEntry(BaseModel):
    """One raw directory entry as reported by FTP or SFTP."""

    model_config = ConfigDict(frozen=True)

    name: str
    is_dir: bool
    is_file: bool
    size: int | None = None
    modified: datetime | None = None


def glob_to_regex(glob: str | None) -> re.Pattern | None:
    """Compile a ``*``/``?`` glob into an anchored, case-sensitive regex.

    Every other character is literal. Returns None for a blank glob, which
    matches everything.
    """
    if glob is None or not glob.strip():
        return None
    parts = []
    for ch in glob:
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts), re.DOTALL)


def glob_matches(pattern: re.Pattern | None, name: str) -> bool:
    return pattern is None or pattern.fullmatch(name) is not None


def join_remote(directory: str, name: str) -> str:
    if not directory:
        return name
    return directory.rstrip("/") + "/" + name


def walk(
    list_dir: Callable[[str], Iterable[RemoteEntry]],
    root: str,
    *,
    recursive: bool = False,
    glob: str | None = None,
    include_directories: bool = False,
) -> list[RemoteFileInfo]:
    """Depth-first walk from ``root`` using ``list_dir`` to read each directory.

    The glob filters what is reported, not where the walk descends.
    """
    pattern = glob_to_regex(glob)
    out: list[RemoteFileInfo] = []

    def visit(directory: str) -> None:
        for entry in list_dir(directory):
            if entry.name in (".", ".."):
                continue
            path = join_remote(directory, entry.name)
            if entry.is_dir:
                if include_directories and glob_matches(pattern, entry.name):
                    out.append(
                        RemoteFileInfo(path=path, directory=True, size_bytes=None, modified=entry.modified)
                    )
                if recursive:
                    visit(path)
            elif entry.is_file and glob_matches(pattern, entry.name):
                out.append(
                    RemoteFileInfo(
                        path=path, directory=False, size_bytes=entry.size, modified=entry.modified
                    )
                )

    visit(root)
    return out
