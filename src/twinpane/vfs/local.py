"""Filesystem backend for the local disk."""

import logging
import os
import shutil
import stat
from typing import BinaryIO, List

from .base import DirEntry, FileInfo, FileSystem
from .errors import translate_errors


logger = logging.getLogger(__name__)


def _info_from_stat(name: str, st: os.stat_result) -> FileInfo:
    return FileInfo(
        name=name,
        size=st.st_size,
        mtime=st.st_mtime,
        mode=st.st_mode,
        is_dir=stat.S_ISDIR(st.st_mode),
    )


class LocalFileSystem(FileSystem):
    """FileSystem implementation backed by ``os`` and ``shutil``."""

    def read_dir(self, path: str) -> List[DirEntry]:
        entries: List[DirEntry] = []
        with translate_errors("read directory", path):
            with os.scandir(path) as it:
                dirents = list(it)

        for dirent in dirents:
            try:
                st = dirent.stat(follow_symlinks=False)
            except OSError as e:
                # Entry vanished between listing and stat
                logger.debug(f"Skipping {dirent.path}: {e}")
                continue

            if not dirent.is_symlink():
                info = _info_from_stat(dirent.name, st)
                entries.append(DirEntry(name=info.name, size=info.size, mtime=info.mtime,
                                        mode=info.mode, is_dir=info.is_dir))
                continue

            entries.append(self._symlink_entry(dirent.path, dirent.name, st))
        return entries

    def _symlink_entry(self, full_path: str, name: str, link_stat: os.stat_result) -> DirEntry:
        """Describe a symlink by its target; target fields are zero when it cannot be resolved."""
        try:
            target = os.readlink(full_path)
        except OSError:
            target = ""
        try:
            info = _info_from_stat(name, os.stat(full_path))
        except OSError:
            # Dangling or unreadable link: no target fields
            return DirEntry(name=name, size=0, mtime=0.0, mode=link_stat.st_mode,
                            is_dir=False, is_symlink=True, link_target=target)
        return DirEntry(name=name, size=info.size, mtime=info.mtime, mode=info.mode,
                        is_dir=info.is_dir, is_symlink=True, link_target=target)

    def stat(self, path: str) -> FileInfo:
        with translate_errors("stat", path):
            return _info_from_stat(os.path.basename(path) or path, os.stat(path))

    def lstat(self, path: str) -> FileInfo:
        with translate_errors("lstat", path):
            return _info_from_stat(os.path.basename(path) or path, os.lstat(path))

    def readlink(self, path: str) -> str:
        with translate_errors("read link", path):
            return os.readlink(path)

    def open_read(self, path: str) -> BinaryIO:
        with translate_errors("open", path):
            return open(path, "rb")

    def create(self, path: str, mode: int = 0o644) -> BinaryIO:
        with translate_errors("create", path):
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
            return os.fdopen(fd, "wb")

    def mkdir_all(self, path: str, mode: int = 0o755) -> None:
        with translate_errors("create directory", path):
            os.makedirs(path, mode=mode, exist_ok=True)

    def remove(self, path: str) -> None:
        with translate_errors("remove", path):
            if os.path.isdir(path) and not os.path.islink(path):
                os.rmdir(path)
            else:
                os.remove(path)

    def remove_all(self, path: str) -> None:
        if not os.path.lexists(path):
            return
        with translate_errors("remove", path):
            if os.path.isdir(path) and not os.path.islink(path):
                shutil.rmtree(path)
            else:
                os.remove(path)

    def rename(self, old_path: str, new_path: str) -> None:
        with translate_errors("rename", old_path):
            os.rename(old_path, new_path)

    def join(self, *parts: str) -> str:
        return os.path.join(*parts)

    def dirname(self, path: str) -> str:
        return os.path.dirname(path)

    def basename(self, path: str) -> str:
        return os.path.basename(path)

    @property
    def is_local(self) -> bool:
        return True

    def close(self) -> None:
        pass

    def __repr__(self) -> str:
        return "LocalFileSystem()"
