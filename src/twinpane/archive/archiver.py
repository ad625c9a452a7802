"""Create, extract and list zip and tar archives on the local disk."""

import logging
import os
import shutil
import stat
import tarfile
import zipfile
from datetime import datetime
from enum import Enum
from typing import BinaryIO, Iterable, List, Tuple

from ..vfs.errors import translate_errors


logger = logging.getLogger(__name__)

_GZIP_MAGIC = b"\x1f\x8b"
_SEPARATOR = "─" * 70
_ARCHIVE_SUFFIXES = (".tar.gz", ".tgz", ".zip", ".tar")


class ArchiveError(Exception):
    """Raised when an archive cannot be read or written."""
    pass


class UnsafeArchivePathError(ArchiveError):
    """Raised when an archive entry would land outside the extraction directory."""

    def __init__(self, entry_name: str):
        super().__init__(f"invalid path in archive: {entry_name}")
        self.entry_name = entry_name


class ArchiveFormat(Enum):
    """Supported archive formats."""
    ZIP = "zip"
    TAR = "tar"
    TAR_GZ = "tar.gz"

    @classmethod
    def from_name(cls, name: str) -> "ArchiveFormat":
        """Look up a format by name (``zip``, ``tar``, ``tar.gz`` or ``tgz``)."""
        key = name.strip().lower().lstrip(".")
        if key == "tgz":
            key = "tar.gz"
        for fmt in cls:
            if fmt.value == key:
                return fmt
        raise ValueError(f"Unknown archive format: {name}")

    @property
    def extension(self) -> str:
        return "." + self.value


def is_archive_name(name: str) -> bool:
    """Whether ``name`` has an extension this module can extract."""
    return name.lower().endswith(_ARCHIVE_SUFFIXES)


# -- creation ---------------------------------------------------------------

def _walk_tree(root: str, prefix: str) -> Iterable[Tuple[str, str, bool]]:
    """Yield ``(path, archive name, is_dir)`` for a directory tree.

    Symlinks and non-regular files are skipped.
    """
    yield root, prefix, True
    for current, dirnames, filenames in os.walk(root):
        rel_dir = os.path.relpath(current, root)
        dirnames.sort()
        for dirname in list(dirnames):
            full = os.path.join(current, dirname)
            if os.path.islink(full):
                dirnames.remove(dirname)
                continue
            yield full, _archive_name(prefix, rel_dir, dirname), True
        for filename in sorted(filenames):
            full = os.path.join(current, filename)
            mode = os.lstat(full).st_mode
            if not stat.S_ISREG(mode):
                continue
            yield full, _archive_name(prefix, rel_dir, filename), False


def _archive_name(prefix: str, rel_dir: str, name: str) -> str:
    parts = [prefix]
    if rel_dir != os.curdir:
        parts.extend(rel_dir.split(os.sep))
    parts.append(name)
    return "/".join(parts)


def _collect(base_dir: str, entries: Iterable[str]) -> List[Tuple[str, str, bool]]:
    items = []
    for entry in entries:
        path = os.path.join(base_dir, entry)
        arcname = entry.replace(os.sep, "/")
        with translate_errors("read", path):
            if os.path.isdir(path) and not os.path.islink(path):
                items.extend(_walk_tree(path, arcname))
            else:
                os.stat(path)
                items.append((path, arcname, False))
    return items


def create_archive(fmt: ArchiveFormat, destination: str, base_dir: str, entries: Iterable[str]) -> int:
    """
    Create an archive of ``entries`` (names relative to ``base_dir``).

    Args:
        fmt: Archive format
        destination: Path of the archive to write
        base_dir: Directory the entry names are relative to
        entries: File and directory names to include

    Returns:
        int: Number of members written

    Raises:
        ArchiveError: If the archive cannot be written
        VFSError: If a source cannot be read
    """
    items = _collect(base_dir, entries)
    logger.info(f"Creating {fmt.value} archive {destination} with {len(items)} member(s)")

    try:
        with translate_errors("create archive", destination):
            if fmt == ArchiveFormat.ZIP:
                _write_zip(destination, items)
            else:
                _write_tar(destination, items, compress=fmt == ArchiveFormat.TAR_GZ)
    except BaseException:
        if os.path.exists(destination):
            os.remove(destination)
        raise

    return len(items)


def _write_zip(destination: str, items: List[Tuple[str, str, bool]]) -> None:
    try:
        with zipfile.ZipFile(destination, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for path, arcname, _ in items:
                archive.write(path, arcname)
    except zipfile.BadZipFile as e:
        raise ArchiveError(f"write zip {destination}: {e}") from e


def _write_tar(destination: str, items: List[Tuple[str, str, bool]], compress: bool) -> None:
    mode = "w:gz" if compress else "w"
    try:
        with tarfile.open(destination, mode) as archive:
            for path, arcname, is_dir in items:
                if is_dir:
                    archive.addfile(archive.gettarinfo(path, arcname))
                    continue
                with open(path, "rb") as handle:
                    info = archive.gettarinfo(arcname=arcname, fileobj=handle)
                    archive.addfile(info, handle)
    except tarfile.TarError as e:
        raise ArchiveError(f"write tar {destination}: {e}") from e


# -- extraction -------------------------------------------------------------

def _safe_target(dest_dir: str, name: str) -> str:
    """Resolve an entry name below ``dest_dir`` or raise."""
    if not name or os.path.isabs(name) or name.startswith(("/", "\\")):
        raise UnsafeArchivePathError(name)
    root = os.path.normpath(os.path.abspath(dest_dir))
    target = os.path.normpath(os.path.join(root, name))
    if not target.startswith(root + os.sep):
        raise UnsafeArchivePathError(name)
    return target


def _is_zip(source: str) -> bool:
    return source.lower().endswith(".zip") or zipfile.is_zipfile(source)


def extract_archive(source: str, dest_dir: str) -> int:
    """
    Extract a zip or tar archive into ``dest_dir``.

    Every member is checked before anything is written; if one would land
    outside ``dest_dir`` nothing is extracted.

    Args:
        source: Archive path
        dest_dir: Destination directory (created when missing)

    Returns:
        int: Number of files and directories written

    Raises:
        UnsafeArchivePathError: If a member escapes ``dest_dir``
        ArchiveError: If the archive is corrupt
        VFSError: If the destination cannot be written
    """
    logger.info(f"Extracting {source} into {dest_dir}")
    with translate_errors("extract", source):
        if _is_zip(source):
            return _extract_zip(source, dest_dir)
        return _extract_tar(source, dest_dir)


def _write_member(stream: BinaryIO, target: str, mode: int) -> None:
    os.makedirs(os.path.dirname(target), exist_ok=True)
    fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode or 0o644)
    with os.fdopen(fd, "wb") as out:
        shutil.copyfileobj(stream, out)


def _extract_zip(source: str, dest_dir: str) -> int:
    try:
        with zipfile.ZipFile(source) as archive:
            members = archive.infolist()
            targets = [_safe_target(dest_dir, info.filename) for info in members]

            os.makedirs(dest_dir, exist_ok=True)
            for info, target in zip(members, targets):
                if info.is_dir():
                    os.makedirs(target, 0o755, exist_ok=True)
                    continue
                with archive.open(info) as stream:
                    _write_member(stream, target, (info.external_attr >> 16) & 0o777)
    except zipfile.BadZipFile as e:
        raise ArchiveError(f"read zip {source}: {e}") from e
    return len(members)


def _open_tar(source: str) -> tarfile.TarFile:
    with open(source, "rb") as handle:
        magic = handle.read(2)
    mode = "r:gz" if magic == _GZIP_MAGIC else "r:"
    return tarfile.open(source, mode)


def _extract_tar(source: str, dest_dir: str) -> int:
    written = 0
    try:
        with _open_tar(source) as archive:
            members = archive.getmembers()
            targets = [_safe_target(dest_dir, member.name) for member in members]

            os.makedirs(dest_dir, exist_ok=True)
            for member, target in zip(members, targets):
                if member.isdir():
                    os.makedirs(target, 0o755, exist_ok=True)
                elif member.isreg():
                    stream = archive.extractfile(member)
                    with stream:
                        _write_member(stream, target, member.mode & 0o777)
                else:
                    logger.debug(f"Skipping {member.name}: not a regular file or directory")
                    continue
                written += 1
    except tarfile.TarError as e:
        raise ArchiveError(f"read tar {source}: {e}") from e
    return written


def unique_extract_dir(parent_dir: str, archive_name: str) -> str:
    """Directory named after the archive that does not exist yet.

    ``photos.tar.gz`` becomes ``photos``, then ``photos2``, ``photos3`` and so on.
    """
    lowered = archive_name.lower()
    base = archive_name
    for suffix in _ARCHIVE_SUFFIXES:
        if lowered.endswith(suffix):
            base = archive_name[:-len(suffix)]
            break

    candidate = os.path.join(parent_dir, base)
    counter = 2
    while os.path.lexists(candidate):
        candidate = os.path.join(parent_dir, f"{base}{counter}")
        counter += 1
    return candidate


# -- listing ----------------------------------------------------------------

def _listing(source: str, rows: List[Tuple[int, datetime, str]]) -> str:
    lines = [
        f"Archive: {os.path.basename(source)}",
        f"{'Size':<12} {'Modified':<20} Name",
        _SEPARATOR,
    ]
    total = 0
    for size, modified, name in rows:
        total += size
        lines.append(f"{size:<12} {modified.strftime('%Y-%m-%d %H:%M:%S'):<20} {name}")
    lines.append(_SEPARATOR)
    lines.append(f"{len(rows)} file(s), {total} bytes total")
    return "\n".join(lines) + "\n"


def list_archive(source: str) -> str:
    """Render the contents of a zip or tar archive as text."""
    with translate_errors("list archive", source):
        if _is_zip(source):
            try:
                with zipfile.ZipFile(source) as archive:
                    rows = [(info.file_size, datetime(*info.date_time), info.filename)
                            for info in archive.infolist()]
            except zipfile.BadZipFile as e:
                raise ArchiveError(f"read zip {source}: {e}") from e
        else:
            try:
                with _open_tar(source) as archive:
                    rows = [(member.size, datetime.fromtimestamp(member.mtime), member.name)
                            for member in archive.getmembers()]
            except tarfile.TarError as e:
                raise ArchiveError(f"read tar {source}: {e}") from e
    return _listing(source, rows)
