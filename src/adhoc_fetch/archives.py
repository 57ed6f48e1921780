"""
Lazy archive views over downloaded files.

``ArchiveTree`` wraps a file (or a callable producing one) and only opens it
when entries are listed or extracted. Zip-family and tar-family archives are
supported. Extraction selects entries with Ant-style patterns (``*``, ``**``,
a trailing ``/`` for a whole directory) and can drop leading path segments or
flatten entries to their last name.
"""

import re
import shutil
import tarfile
import zipfile
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path, PurePosixPath
from typing import Callable, Iterator, List, Optional, Sequence, Union

from .error_handling import ArchiveError, ErrorCategory, get_error_handler

ZIP_SUFFIXES = (".zip", ".jar", ".war", ".ear")
TAR_SUFFIXES = (".tar", ".tar.gz", ".tgz", ".tar.bz2", ".tbz2", ".tar.xz", ".txz")

FileSource = Union[Path, str, Callable[[], Path]]


@dataclass(frozen=True)
class ArchiveEntry:
    """One member of an archive."""

    path: str
    is_dir: bool
    size: int

    @property
    def name(self) -> str:
        return PurePosixPath(self.path).name


@lru_cache(maxsize=256)
def _pattern_regex(pattern: str) -> "re.Pattern[str]":
    if pattern.endswith("/"):
        pattern += "**"
    regex = ""
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            regex += "(?:.*/)?"
            i += 3
        elif pattern.startswith("**", i):
            regex += ".*"
            i += 2
        elif pattern[i] == "*":
            regex += "[^/]*"
            i += 1
        elif pattern[i] == "?":
            regex += "[^/]"
            i += 1
        else:
            regex += re.escape(pattern[i])
            i += 1
    return re.compile(regex + r"\Z")


def matches(path: str, pattern: str) -> bool:
    """Whether an archive path matches an Ant-style pattern."""
    return _pattern_regex(pattern).match(path) is not None


def normalize_member(name: str) -> str:
    """Archive member name without leading ``/`` or ``./`` and trailing ``/``."""
    path = name.replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path.strip("/")


def archive_kind(path: Path) -> str:
    lowered = path.name.lower()
    if lowered.endswith(ZIP_SUFFIXES):
        return "zip"
    if lowered.endswith(TAR_SUFFIXES):
        return "tar"
    if zipfile.is_zipfile(path):
        return "zip"
    if tarfile.is_tarfile(path):
        return "tar"
    raise ArchiveError(f"{path} is not a zip or tar archive")


class ArchiveTree:
    """Lazy view of the entries of an archive file."""

    def __init__(self, source: FileSource):
        self._source = source

    @property
    def path(self) -> Path:
        """The archive file; resolving it may trigger a download."""
        if callable(self._source):
            return Path(self._source())
        return Path(self._source)

    def entries(self) -> List[ArchiveEntry]:
        return [entry for entry, _ in self._walk(read=False)]

    def _walk(self, read: bool) -> Iterator[tuple]:
        path = self.path
        kind = archive_kind(path)
        try:
            if kind == "zip":
                with zipfile.ZipFile(path) as zf:
                    for info in zf.infolist():
                        member = normalize_member(info.filename)
                        if not member:
                            continue
                        entry = ArchiveEntry(member, info.is_dir(), info.file_size)
                        if read and not entry.is_dir:
                            with zf.open(info) as stream:
                                yield entry, stream
                        else:
                            yield entry, None
            else:
                with tarfile.open(path) as tf:
                    for info in tf:
                        member = normalize_member(info.name)
                        if not member or not (info.isdir() or info.isfile()):
                            continue
                        entry = ArchiveEntry(member, info.isdir(), info.size)
                        if read and info.isfile():
                            yield entry, tf.extractfile(info)
                        else:
                            yield entry, None
        except (zipfile.BadZipFile, tarfile.TarError, EOFError) as e:
            get_error_handler().error(
                ErrorCategory.ARCHIVE,
                f"Could not read archive {path.name}",
                "archives",
                "_walk",
                exception=e,
            )
            raise ArchiveError(f"could not read archive {path}: {e}") from e

    def extract(
        self,
        into: Union[Path, str],
        include: Sequence[str] = (),
        exclude: Sequence[str] = (),
        strip_components: int = 0,
        flatten: bool = False,
        include_empty_dirs: bool = False,
        rename: Optional[Callable[[str], str]] = None,
    ) -> List[Path]:
        """
        Copy selected entries into a directory.

        Args:
            into: Destination directory
            include: Patterns an entry must match (all entries when empty)
            exclude: Patterns that drop an entry
            strip_components: Number of leading path segments to drop
            flatten: Keep only the last path segment of every file
            include_empty_dirs: Create directory entries that receive no files
            rename: Maps the final file name to a new plain file name

        Returns:
            List[Path]: Files written, in archive order

        Raises:
            ArchiveError: If the archive is unreadable, an entry would land
                outside ``into``, or two entries would write the same file
        """
        destination = Path(into)
        destination.mkdir(parents=True, exist_ok=True)
        written: List[Path] = []

        for entry, stream in self._walk(read=True):
            if include and not any(matches(entry.path, p) for p in include):
                continue
            if any(matches(entry.path, p) for p in exclude):
                continue

            parts = PurePosixPath(entry.path).parts[strip_components:]
            if not parts:
                continue
            if flatten:
                if entry.is_dir:
                    continue
                parts = parts[-1:]
            if rename is not None and not entry.is_dir:
                new_name = rename(parts[-1])
                if new_name in ("", ".", "..") or "/" in new_name or "\\" in new_name:
                    raise ArchiveError(
                        f"archive entry {entry.path!r} renamed to {new_name!r}, "
                        "which is not a plain file name"
                    )
                parts = parts[:-1] + (new_name,)
            if ".." in parts:
                raise ArchiveError(f"archive entry {entry.path!r} escapes the destination")

            target = destination.joinpath(*parts)
            if entry.is_dir:
                if include_empty_dirs:
                    target.mkdir(parents=True, exist_ok=True)
                continue

            if target in written:
                raise ArchiveError(
                    f"archive entry {entry.path!r} extracts to {target}, "
                    "which another entry already wrote"
                )
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "wb") as out:
                shutil.copyfileobj(stream, out)
            written.append(target)

        return written


def copy_to(source: FileSource, into: Union[Path, str], name: Optional[str] = None) -> Path:
    """Copy a single downloaded file (not an archive) into a directory."""
    path = Path(source()) if callable(source) else Path(source)
    destination = Path(into)
    destination.mkdir(parents=True, exist_ok=True)
    target = destination / (name or path.name)
    shutil.copyfile(path, target)
    return target
