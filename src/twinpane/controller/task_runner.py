"""Background execution of long-running operations."""

import logging
import queue
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

from ..archive.archiver import ArchiveError
from ..crypto.file_cipher import CryptoError
from ..utils.error_handler import handle_error, ErrorCategory, ErrorSeverity
from ..utils.logging_config import get_logging_manager
from ..vfs.errors import (
    AuthenticationError, TransferCancelledError, UnsupportedOperationError,
    VFSConnectionError, VFSError
)


logger = logging.getLogger(__name__)


def categorize_error(error: BaseException) -> ErrorCategory:
    """Map an exception onto the error handler's categories."""
    if isinstance(error, AuthenticationError):
        return ErrorCategory.AUTHENTICATION
    if isinstance(error, VFSConnectionError):
        return ErrorCategory.CONNECTION
    if isinstance(error, UnsupportedOperationError):
        return ErrorCategory.UNSUPPORTED
    if isinstance(error, VFSError):
        return ErrorCategory.FILE_OPERATION
    if isinstance(error, ArchiveError):
        return ErrorCategory.ARCHIVE
    if isinstance(error, CryptoError):
        return ErrorCategory.ENCRYPTION
    return ErrorCategory.UNKNOWN


class MainThreadDispatcher:
    """Queue of callbacks posted by worker threads and run by the UI loop."""

    def __init__(self):
        self._pending: "queue.Queue" = queue.Queue()

    def post(self, func: Callable, *args, **kwargs) -> None:
        self._pending.put((func, args, kwargs))

    def process_pending(self, max_items: Optional[int] = None) -> int:
        """Run queued callbacks on the calling thread.

        Args:
            max_items: Upper bound on callbacks to run, ``None`` for all

        Returns:
            int: Number of callbacks that ran
        """
        processed = 0
        while max_items is None or processed < max_items:
            try:
                func, args, kwargs = self._pending.get_nowait()
            except queue.Empty:
                break
            processed += 1
            try:
                func(*args, **kwargs)
            except Exception as e:
                logger.error(f"UI callback {getattr(func, '__name__', func)!r} failed: {e}", exc_info=True)
        return processed

    def has_pending(self) -> bool:
        return not self._pending.empty()


class BackgroundTaskRunner:
    """Runs operations on a thread pool and reports back via a dispatcher.

    Callbacks are posted before the returned future completes, so once
    ``future.result()`` returns, ``process_pending()`` delivers the outcome.
    Cancellation is routed to ``on_cancelled`` instead of ``on_error``.
    """

    def __init__(self, dispatcher: MainThreadDispatcher, max_workers: int = 4):
        self.dispatcher = dispatcher
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="twinpane-worker")
        logger.info(f"BackgroundTaskRunner initialized with {max_workers} workers")

    def submit(self, name: str, fn: Callable[[], Any],
               on_success: Optional[Callable[[Any], None]] = None,
               on_error: Optional[Callable[[Exception], None]] = None,
               on_cancelled: Optional[Callable[[], None]] = None) -> Future:
        """
        Run ``fn`` in the background.

        Args:
            name: Operation name used in logs and error reports
            fn: The work to run
            on_success: Receives the result on the UI thread
            on_error: Receives the exception on the UI thread
            on_cancelled: Called on the UI thread if the work was cancelled

        Returns:
            Future: Completes with the result or the raised exception
        """
        return self._executor.submit(self._run, name, fn, on_success, on_error, on_cancelled)

    def _run(self, name, fn, on_success, on_error, on_cancelled):
        start_time = time.time()
        logger.debug(f"Starting background task: {name}")

        try:
            result = fn()
        except TransferCancelledError:
            logger.info(f"{name} cancelled after {time.time() - start_time:.2f}s")
            if on_cancelled is not None:
                self.dispatcher.post(on_cancelled)
            raise
        except Exception as e:
            duration = time.time() - start_time
            handle_error(
                error=e,
                category=categorize_error(e),
                severity=ErrorSeverity.MEDIUM,
                component="BackgroundTaskRunner",
                operation=name,
                additional_data={"duration": round(duration, 3)}
            )
            if on_error is not None:
                self.dispatcher.post(on_error, e)
            raise

        duration = time.time() - start_time
        logging_manager = get_logging_manager()
        if logging_manager is not None:
            logging_manager.log_performance(name, duration)
        logger.debug(f"{name} completed in {duration:.2f}s")

        if on_success is not None:
            self.dispatcher.post(on_success, result)
        return result

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; queued tasks that have not started are dropped."""
        self._executor.shutdown(wait=wait, cancel_futures=True)
        logger.info("BackgroundTaskRunner stopped")
