"""Periodic keep-alive jobs for idle remote sessions."""

import logging
import threading
import time
from typing import Callable, Optional

import schedule


logger = logging.getLogger(__name__)


class KeepAliveTask:
    """Runs a job on a fixed interval on a background thread.

    Each task owns a private :class:`schedule.Scheduler`, so sessions do not
    share jobs. The task is stopped exactly once; later calls to :meth:`stop`
    are no-ops.
    """

    def __init__(self, job: Callable[[], None], interval_seconds: float,
                 name: str = "keepalive", poll_seconds: float = 1.0):
        """
        Initialize the keep-alive task.

        Args:
            job: The function to execute on every tick
            interval_seconds: Seconds between executions
            name: Name used for the thread and in log messages
            poll_seconds: How often the thread checks for pending jobs
        """
        if interval_seconds <= 0:
            raise ValueError(f"Keep-alive interval must be positive, got: {interval_seconds}")

        self.job = job
        self.interval_seconds = interval_seconds
        self.name = name
        self.poll_seconds = poll_seconds
        self._scheduler = schedule.Scheduler()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._stopped = False

    def _safe_job_execution(self) -> None:
        """Execute the job, logging failures without stopping the loop."""
        try:
            self.job()
            logger.debug(f"{self.name}: keep-alive sent")
        except Exception as e:
            logger.warning(f"{self.name}: keep-alive failed: {e}")

    def _run(self) -> None:
        """Scheduler loop running in a separate thread."""
        logger.debug(f"{self.name}: keep-alive thread started")
        while not self._stop_event.is_set():
            try:
                self._scheduler.run_pending()
            except Exception as e:
                logger.error(f"{self.name}: error in keep-alive loop: {e}", exc_info=True)
                time.sleep(self.poll_seconds)
            self._stop_event.wait(self.poll_seconds)
        logger.debug(f"{self.name}: keep-alive thread stopped")

    def start(self) -> None:
        """Start the background thread."""
        with self._lock:
            if self._thread is not None or self._stopped:
                logger.warning(f"{self.name}: keep-alive already started or stopped")
                return
            self._scheduler.every(self.interval_seconds).seconds.do(self._safe_job_execution)
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
        logger.debug(f"{self.name}: keep-alive every {self.interval_seconds} seconds")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the task; only the first call has an effect."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            self._stop_event.set()
            self._scheduler.clear()
            thread = self._thread

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(f"{self.name}: keep-alive thread did not stop within timeout")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stopped
