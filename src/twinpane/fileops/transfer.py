"""Backend-agnostic copy, move, delete and size operations."""

import logging
import shutil
from typing import BinaryIO, List, Optional

from ..vfs.base import FileInfo, FileSystem
from ..vfs.errors import TransferCancelledError, VFSError
from .progress import CancellationToken, Progress, ProgressCallback


logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 32 * 1024


class TransferEngine:
    """Moves data between any two :class:`FileSystem` backends.

    The engine only talks to the filesystem contract; local-to-local,
    local-to-remote, remote-to-local and remote-to-remote all run the same
    code. Cancellation is checked before every directory entry and every
    chunk.
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got: {chunk_size}")
        self.chunk_size = chunk_size

    # -- single items -----------------------------------------------------

    def copy(self, src_fs: FileSystem, src: str, dst_fs: FileSystem, dst: str,
             on_progress: Optional[ProgressCallback] = None,
             token: Optional[CancellationToken] = None,
             file_index: int = 0, file_count: int = 0) -> None:
        """
        Copy a file or directory tree.

        Args:
            src_fs: Filesystem owning ``src``
            src: Source path
            dst_fs: Filesystem owning ``dst``
            dst: Destination path (the new name, not the target directory)
            on_progress: Called after every chunk
            token: Cancellation token checked before each entry and chunk
            file_index: 1-based position within a batch, 0 outside batches
            file_count: Batch size, 0 outside batches

        Raises:
            TransferCancelledError: If the token was cancelled; the partial
                destination file has been removed
            VFSError: If a filesystem operation fails
        """
        info = src_fs.stat(src)
        if info.is_dir:
            if src_fs is dst_fs and self._is_inside(src_fs, src, dst):
                raise VFSError(f"copy {src}: cannot copy a directory into itself", src, "copy")
            self._copy_dir(src_fs, src, info, dst_fs, dst, on_progress, token, file_index, file_count)
        else:
            self._copy_file(src_fs, src, info, dst_fs, dst, on_progress, token, file_index, file_count)

    def _copy_dir(self, src_fs: FileSystem, src: str, info: FileInfo, dst_fs: FileSystem, dst: str,
                  on_progress, token, file_index: int, file_count: int) -> None:
        dst_fs.mkdir_all(dst, info.permissions or 0o755)

        for entry in src_fs.read_dir(src):
            if token is not None:
                token.raise_if_cancelled()

            child_src = src_fs.join(src, entry.name)
            child_dst = dst_fs.join(dst, entry.name)
            if entry.is_symlink and entry.is_dir:
                logger.warning(f"Skipping symlinked directory {child_src}")
                continue
            self.copy(src_fs, child_src, dst_fs, child_dst, on_progress, token, file_index, file_count)

    def _copy_file(self, src_fs: FileSystem, src: str, info: FileInfo, dst_fs: FileSystem, dst: str,
                   on_progress, token, file_index: int, file_count: int) -> None:
        parent = dst_fs.dirname(dst)
        if parent:
            dst_fs.mkdir_all(parent, 0o755)

        mode = info.permissions or 0o644
        # One session cannot read and write at once on every backend
        open_source = src_fs.open_read_detached if src_fs is dst_fs else src_fs.open_read

        if on_progress is None and token is None:
            with open_source(src) as reader, dst_fs.create(dst, mode) as writer:
                shutil.copyfileobj(reader, writer, self.chunk_size)
            return

        file_name = src_fs.basename(src)
        total = info.size

        with open_source(src) as reader:
            writer = dst_fs.create(dst, mode)
            try:
                done = 0
                while True:
                    if token is not None:
                        token.raise_if_cancelled()
                    chunk = reader.read(self.chunk_size)
                    if not chunk:
                        break
                    writer.write(chunk)
                    done += len(chunk)
                    if on_progress is not None:
                        on_progress(Progress(file_name, done, total, file_index, file_count))

                if done == 0 and on_progress is not None:
                    on_progress(Progress(file_name, 0, total, file_index, file_count))
            except TransferCancelledError:
                logger.info(f"Copy of {src} cancelled, removing partial {dst}")
                self._discard_partial(writer, dst_fs, dst)
                raise
            except Exception:
                self._close_after_failure(writer, dst)
                raise

            writer.close()

    def move(self, src_fs: FileSystem, src: str, dst_fs: FileSystem, dst: str,
             on_progress: Optional[ProgressCallback] = None,
             token: Optional[CancellationToken] = None,
             file_index: int = 0, file_count: int = 0) -> None:
        """
        Move a file or directory tree.

        Within one backend a rename is tried first. Otherwise, or when the
        rename fails, the item is copied and the source removed. On
        cancellation the partial destination is removed and the source kept.

        Raises:
            TransferCancelledError: If the token was cancelled
            VFSError: If a filesystem operation fails
        """
        parent = dst_fs.dirname(dst)
        if parent:
            dst_fs.mkdir_all(parent, 0o755)

        if src_fs is dst_fs:
            try:
                src_fs.rename(src, dst)
                return
            except VFSError as e:
                logger.debug(f"Rename {src} -> {dst} failed, falling back to copy: {e}")

        try:
            self.copy(src_fs, src, dst_fs, dst, on_progress, token, file_index, file_count)
        except TransferCancelledError:
            try:
                dst_fs.remove_all(dst)
            except VFSError as e:
                logger.warning(f"Could not remove partial move destination {dst}: {e}")
            raise

        src_fs.remove_all(src)

    def delete(self, fs: FileSystem, path: str) -> None:
        """Remove a file or directory tree; an absent path is not an error."""
        fs.remove_all(path)

    def mkdir(self, fs: FileSystem, path: str) -> None:
        fs.mkdir_all(path, 0o755)

    def calc_dir_size(self, fs: FileSystem, path: str) -> int:
        """Sum the sizes of all non-directory entries below ``path``.

        Entries that cannot be read are skipped.
        """
        total = 0

        def visit(_path: str, info: Optional[FileInfo], error: Optional[Exception]) -> None:
            nonlocal total
            if error is not None or info is None:
                return
            if not info.is_dir:
                total += info.size

        fs.walk(path, visit)
        return total

    # -- batches ----------------------------------------------------------

    def copy_batch(self, src_fs: FileSystem, sources: List[str], dst_fs: FileSystem, dst_dir: str,
                   on_progress: Optional[ProgressCallback] = None,
                   token: Optional[CancellationToken] = None) -> List[str]:
        """
        Copy each source into ``dst_dir`` under its own name, in order.

        The batch stops at the first failure or cancellation.

        Returns:
            List[str]: Destination paths that were written
        """
        count = len(sources)
        written = []
        for index, src in enumerate(sources, start=1):
            if token is not None:
                token.raise_if_cancelled()
            dst = dst_fs.join(dst_dir, src_fs.basename(src))
            logger.info(f"Copying {src} -> {dst} ({index}/{count})")
            self.copy(src_fs, src, dst_fs, dst, on_progress, token, index, count)
            written.append(dst)
        return written

    def move_batch(self, src_fs: FileSystem, sources: List[str], dst_fs: FileSystem, dst_dir: str,
                   on_progress: Optional[ProgressCallback] = None,
                   token: Optional[CancellationToken] = None) -> List[str]:
        """Move each source into ``dst_dir`` in order; stops at the first failure."""
        count = len(sources)
        moved = []
        for index, src in enumerate(sources, start=1):
            if token is not None:
                token.raise_if_cancelled()
            dst = dst_fs.join(dst_dir, src_fs.basename(src))
            logger.info(f"Moving {src} -> {dst} ({index}/{count})")
            self.move(src_fs, src, dst_fs, dst, on_progress, token, index, count)
            moved.append(dst)
        return moved

    def delete_batch(self, fs: FileSystem, paths: List[str],
                     token: Optional[CancellationToken] = None) -> int:
        """Delete each path in order; returns how many were deleted."""
        deleted = 0
        for path in paths:
            if token is not None:
                token.raise_if_cancelled()
            logger.info(f"Deleting {path}")
            self.delete(fs, path)
            deleted += 1
        return deleted

    # -- helpers ----------------------------------------------------------

    @staticmethod
    def _is_inside(fs: FileSystem, parent: str, path: str) -> bool:
        current = path
        while True:
            if current == parent:
                return True
            up = fs.dirname(current)
            if not up or up == current:
                return False
            current = up

    @staticmethod
    def _discard_partial(writer: BinaryIO, dst_fs: FileSystem, dst: str) -> None:
        try:
            writer.close()
        except (VFSError, OSError) as e:
            logger.debug(f"Closing partial {dst} failed: {e}")
        try:
            dst_fs.remove_all(dst)
        except VFSError as e:
            logger.warning(f"Could not remove partial file {dst}: {e}")

    @staticmethod
    def _close_after_failure(writer: BinaryIO, dst: str) -> None:
        try:
            writer.close()
        except (VFSError, OSError) as e:
            logger.debug(f"Closing {dst} after failure also failed: {e}")
