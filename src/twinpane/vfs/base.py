"""Filesystem abstraction shared by the local, SFTP and FTP backends."""

import stat
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import BinaryIO, Callable, List, Optional

from .errors import VFSError, VFSNotFoundError


@dataclass(frozen=True)
class FileInfo:
    """Metadata snapshot of a file or directory.

    ``mode`` carries the full ``st_mode`` value (type and permission bits).
    """
    name: str
    size: int
    mtime: float
    mode: int
    is_dir: bool

    @property
    def permissions(self) -> int:
        """Permission bits only, suitable for create/mkdir."""
        return stat.S_IMODE(self.mode)


@dataclass(frozen=True)
class DirEntry:
    """One directory listing entry.

    For symlinks the size, time, mode and directory flag describe the link
    target when it could be resolved.
    """
    name: str
    size: int
    mtime: float
    mode: int
    is_dir: bool
    is_symlink: bool = False
    link_target: str = ""

    @property
    def info(self) -> FileInfo:
        return FileInfo(name=self.name, size=self.size, mtime=self.mtime,
                        mode=self.mode, is_dir=self.is_dir)


# callback(path, info, error); info is None when the path itself could not be stat'ed
WalkCallback = Callable[[str, Optional[FileInfo], Optional[Exception]], None]


class FileSystem(ABC):
    """Capability contract every backend implements.

    Paths are always composed with :meth:`join`, :meth:`dirname` and
    :meth:`basename` of the backend that owns them. Every failing method raises
    a :class:`~twinpane.vfs.errors.VFSError` subclass.
    """

    @abstractmethod
    def read_dir(self, path: str) -> List[DirEntry]:
        """List a directory, in the order the backend returns entries."""

    @abstractmethod
    def stat(self, path: str) -> FileInfo:
        """Return metadata, following symlinks."""

    @abstractmethod
    def lstat(self, path: str) -> FileInfo:
        """Return metadata without following symlinks."""

    @abstractmethod
    def readlink(self, path: str) -> str:
        """Return the target of a symlink."""

    @abstractmethod
    def open_read(self, path: str) -> BinaryIO:
        """Open a file for streaming read."""

    @abstractmethod
    def create(self, path: str, mode: int = 0o644) -> BinaryIO:
        """Create or truncate a file for streaming write.

        The returned object's ``close()`` commits the data and raises if the
        write failed.
        """

    @abstractmethod
    def mkdir_all(self, path: str, mode: int = 0o755) -> None:
        """Create a directory and any missing parents."""

    @abstractmethod
    def remove(self, path: str) -> None:
        """Remove a single file or empty directory."""

    @abstractmethod
    def remove_all(self, path: str) -> None:
        """Remove a path recursively; an absent path is not an error."""

    @abstractmethod
    def rename(self, old_path: str, new_path: str) -> None:
        """Rename or move within this backend."""

    @abstractmethod
    def join(self, *parts: str) -> str:
        pass

    @abstractmethod
    def dirname(self, path: str) -> str:
        pass

    @abstractmethod
    def basename(self, path: str) -> str:
        pass

    @property
    @abstractmethod
    def is_local(self) -> bool:
        pass

    @abstractmethod
    def close(self) -> None:
        """Release backend resources. Safe to call more than once."""

    # -- derived operations --------------------------------------------

    def open_read_detached(self, path: str) -> BinaryIO:
        """Open a file for reading without tying up the session.

        Used when the same session writes while this reader is open. Backends
        whose reads occupy the connection override this.
        """
        return self.open_read(path)

    def read_file(self, path: str) -> bytes:
        """Read a whole file into memory."""
        with self.open_read(path) as handle:
            return handle.read()

    def exists(self, path: str) -> bool:
        try:
            self.lstat(path)
            return True
        except VFSNotFoundError:
            return False

    def walk(self, root: str, callback: WalkCallback) -> None:
        """Visit ``root`` and everything below it, depth first.

        Errors are handed to ``callback`` instead of being raised; anything the
        callback raises aborts the walk. Symlinked directories are reported but
        not descended into.
        """
        try:
            info = self.stat(root)
        except VFSError as e:
            callback(root, None, e)
            return

        callback(root, info, None)
        if info.is_dir:
            self._walk_dir(root, info, callback)

    def _walk_dir(self, path: str, info: FileInfo, callback: WalkCallback) -> None:
        try:
            entries = self.read_dir(path)
        except VFSError as e:
            callback(path, info, e)
            return

        for entry in entries:
            child = self.join(path, entry.name)
            child_info = entry.info
            callback(child, child_info, None)
            if entry.is_dir and not entry.is_symlink:
                self._walk_dir(child, child_info, callback)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
