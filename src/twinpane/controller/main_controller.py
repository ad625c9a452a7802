"""Facade the UI talks to: sessions, transfers, archives and encryption."""

import logging
import threading
from concurrent.futures import Future
from typing import Any, Callable, Dict, List, Optional

from ..archive.archiver import (
    ArchiveFormat, create_archive, extract_archive, list_archive, unique_extract_dir
)
from ..config.models import AppSettings, ServerConfig
from ..crypto.file_cipher import decrypt_file, default_encrypted_name, encrypt_file
from ..fileops.progress import CancellationToken, Progress, ThrottledProgress
from ..fileops.transfer import TransferEngine
from ..vfs.base import FileSystem
from ..vfs.connection_manager import ConnectionManager
from ..vfs.errors import UnsupportedOperationError
from ..vfs.local import LocalFileSystem
from .task_runner import BackgroundTaskRunner, MainThreadDispatcher


logger = logging.getLogger(__name__)

SuccessCallback = Optional[Callable[[Any], None]]
ErrorCallback = Optional[Callable[[Exception], None]]
CancelCallback = Optional[Callable[[], None]]
ProgressSink = Optional[Callable[[Progress], None]]


class FileManagerController:
    """Runs every file manager operation in the background.

    Results, errors and progress are delivered on the UI thread through the
    dispatcher. Remote sessions are shared by server name and reference
    counted by holder (typically a panel): a session closes only when its
    last holder releases it.
    """

    def __init__(self, settings: Optional[AppSettings] = None,
                 connections: Optional[ConnectionManager] = None,
                 dispatcher: Optional[MainThreadDispatcher] = None,
                 runner: Optional[BackgroundTaskRunner] = None):
        """
        Initialize the controller with all required components.

        Args:
            settings: Runtime settings; defaults when omitted
            connections: Session registry; built from ``settings`` when omitted
            dispatcher: UI-thread dispatcher
            runner: Background executor
        """
        self.settings = settings or AppSettings.defaults()
        self.local_fs = LocalFileSystem()
        self.connections = connections or ConnectionManager(self.settings.remote)
        self.engine = TransferEngine(self.settings.transfer.chunk_size)
        self.dispatcher = dispatcher or MainThreadDispatcher()
        self.runner = runner or BackgroundTaskRunner(self.dispatcher, self.settings.transfer.workers)

        self._holders: Dict[str, str] = {}
        self._lock = threading.Lock()
        # Serializes dialing and closing sessions against the holder table
        self._session_lock = threading.RLock()
        self._shut_down = False

        logger.info("FileManagerController initialized")

    # -- sessions ---------------------------------------------------------

    def connect(self, holder: str, config: ServerConfig,
                on_success: SuccessCallback = None, on_error: ErrorCallback = None) -> Future:
        """
        Open (or reuse) the session for ``config`` on behalf of ``holder``.

        A holder can use one server at a time; connecting it elsewhere
        releases its previous server.

        Returns:
            Future: Completes with the session's FileSystem
        """
        def work() -> FileSystem:
            with self._session_lock:
                session = self.connections.connect(config)
                with self._lock:
                    previous = self._holders.get(holder)
                    self._holders[holder] = config.name
                if previous is not None and previous != config.name:
                    self._disconnect_if_unused(previous)
                return session

        return self.runner.submit(f"connect {config.name}", work, on_success, on_error)

    def release(self, holder: str,
                on_success: SuccessCallback = None, on_error: ErrorCallback = None) -> Future:
        """
        Drop ``holder``'s session reference.

        The reference is dropped at once; closing the session, when this was
        its last holder, runs in the background.

        Returns:
            Future: Completes with True if this closed the session
        """
        with self._lock:
            name = self._holders.pop(holder, None)
        if name is None:
            return self.runner.submit(f"release {holder}", lambda: False, on_success, on_error)
        return self.runner.submit(f"release {holder}", lambda: self._disconnect_if_unused(name),
                                  on_success, on_error)

    def _disconnect_if_unused(self, name: str) -> bool:
        # A connect to the same server waits here until the close is done
        with self._session_lock:
            with self._lock:
                if name in self._holders.values():
                    logger.debug(f"Session {name} still in use, keeping it open")
                    return False
            self.connections.disconnect(name)
            return True

    def filesystem_for(self, holder: str) -> FileSystem:
        """The session ``holder`` is using, or the local disk."""
        with self._lock:
            name = self._holders.get(holder)
        if name is None:
            return self.local_fs
        session = self.connections.get(name)
        return session if session is not None else self.local_fs

    def holders_of(self, name: str) -> List[str]:
        with self._lock:
            return sorted(h for h, server in self._holders.items() if server == name)

    # -- transfers --------------------------------------------------------

    def _progress_sink(self, on_progress: ProgressSink) -> Optional[ThrottledProgress]:
        if on_progress is None:
            return None
        return ThrottledProgress(lambda progress: self.dispatcher.post(on_progress, progress),
                                 self.settings.transfer.progress_interval_ms)

    def copy_entries(self, src_fs: FileSystem, sources: List[str], dst_fs: FileSystem, dst_dir: str,
                     on_progress: ProgressSink = None, token: Optional[CancellationToken] = None,
                     on_success: SuccessCallback = None, on_error: ErrorCallback = None,
                     on_cancelled: CancelCallback = None) -> Future:
        """Copy ``sources`` into ``dst_dir``; completes with the written paths."""
        sink = self._progress_sink(on_progress)
        token = token or CancellationToken()
        return self.runner.submit(
            f"copy {len(sources)} item(s)",
            lambda: self.engine.copy_batch(src_fs, sources, dst_fs, dst_dir, sink, token),
            on_success, on_error, on_cancelled
        )

    def move_entries(self, src_fs: FileSystem, sources: List[str], dst_fs: FileSystem, dst_dir: str,
                     on_progress: ProgressSink = None, token: Optional[CancellationToken] = None,
                     on_success: SuccessCallback = None, on_error: ErrorCallback = None,
                     on_cancelled: CancelCallback = None) -> Future:
        """Move ``sources`` into ``dst_dir``; completes with the new paths."""
        sink = self._progress_sink(on_progress)
        token = token or CancellationToken()
        return self.runner.submit(
            f"move {len(sources)} item(s)",
            lambda: self.engine.move_batch(src_fs, sources, dst_fs, dst_dir, sink, token),
            on_success, on_error, on_cancelled
        )

    def delete_entries(self, fs: FileSystem, paths: List[str], token: Optional[CancellationToken] = None,
                       on_success: SuccessCallback = None, on_error: ErrorCallback = None,
                       on_cancelled: CancelCallback = None) -> Future:
        return self.runner.submit(
            f"delete {len(paths)} item(s)",
            lambda: self.engine.delete_batch(fs, paths, token),
            on_success, on_error, on_cancelled
        )

    def make_directory(self, fs: FileSystem, path: str,
                       on_success: SuccessCallback = None, on_error: ErrorCallback = None) -> Future:
        return self.runner.submit(f"mkdir {path}", lambda: self.engine.mkdir(fs, path), on_success, on_error)

    def calc_dir_size(self, fs: FileSystem, path: str,
                      on_success: SuccessCallback = None, on_error: ErrorCallback = None) -> Future:
        return self.runner.submit(f"size {path}", lambda: self.engine.calc_dir_size(fs, path),
                                  on_success, on_error)

    # -- archives and encryption (local only) ------------------------------

    @staticmethod
    def _require_local(fs: FileSystem, operation: str) -> None:
        if not fs.is_local:
            raise UnsupportedOperationError(f"{operation} is only available on local files",
                                            operation=operation)

    def compress(self, fs: FileSystem, fmt: ArchiveFormat, destination: str, base_dir: str,
                 entries: List[str],
                 on_success: SuccessCallback = None, on_error: ErrorCallback = None) -> Future:
        """Create an archive; completes with the number of members written.

        Raises:
            UnsupportedOperationError: If ``fs`` is not the local disk
        """
        self._require_local(fs, "compress")
        return self.runner.submit(
            f"compress {destination}",
            lambda: create_archive(fmt, destination, base_dir, entries),
            on_success, on_error
        )

    def extract(self, fs: FileSystem, source: str, dest_dir: Optional[str] = None,
                on_success: SuccessCallback = None, on_error: ErrorCallback = None) -> Future:
        """Extract an archive; completes with the destination directory.

        Without ``dest_dir`` a fresh directory named after the archive is
        created next to it.

        Raises:
            UnsupportedOperationError: If ``fs`` is not the local disk
        """
        self._require_local(fs, "extract")

        def work() -> str:
            target = dest_dir or unique_extract_dir(fs.dirname(source), fs.basename(source))
            extract_archive(source, target)
            return target

        return self.runner.submit(f"extract {source}", work, on_success, on_error)

    def view_archive(self, fs: FileSystem, source: str,
                     on_success: SuccessCallback = None, on_error: ErrorCallback = None) -> Future:
        self._require_local(fs, "view archive")
        return self.runner.submit(f"list {source}", lambda: list_archive(source), on_success, on_error)

    def encrypt(self, fs: FileSystem, source: str, passphrase: str, destination: Optional[str] = None,
                on_success: SuccessCallback = None, on_error: ErrorCallback = None) -> Future:
        """Encrypt a file; completes with the output path.

        Raises:
            UnsupportedOperationError: If ``fs`` is not the local disk
        """
        self._require_local(fs, "encrypt")
        target = destination or fs.join(fs.dirname(source), default_encrypted_name())

        def work() -> str:
            encrypt_file(source, target, passphrase)
            return target

        return self.runner.submit(f"encrypt {source}", work, on_success, on_error)

    def decrypt(self, fs: FileSystem, source: str, passphrase: str, dest_dir: Optional[str] = None,
                on_success: SuccessCallback = None, on_error: ErrorCallback = None) -> Future:
        """Decrypt a file; completes with the recovered file name.

        Raises:
            UnsupportedOperationError: If ``fs`` is not the local disk
        """
        self._require_local(fs, "decrypt")
        target_dir = dest_dir or fs.dirname(source)
        return self.runner.submit(f"decrypt {source}", lambda: decrypt_file(source, target_dir, passphrase),
                                  on_success, on_error)

    # -- lifecycle --------------------------------------------------------

    def shutdown(self) -> None:
        """Stop background work and close every session. Runs once."""
        with self._lock:
            if self._shut_down:
                return
            self._shut_down = True
            self._holders.clear()

        logger.info("Shutting down FileManagerController")
        self.runner.shutdown(wait=False)
        self.connections.disconnect_all()
