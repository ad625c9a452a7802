"""Progress reporting and cooperative cancellation for file operations."""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from ..vfs.errors import TransferCancelledError


@dataclass(frozen=True)
class Progress:
    """Snapshot of a running transfer.

    ``file_index`` is 1-based; ``file_index`` and ``file_count`` are 0 when the
    operation is not part of a batch.
    """
    file_name: str
    done: int
    total: int
    file_index: int = 0
    file_count: int = 0

    @property
    def percent(self) -> int:
        """Completion percentage in 0..100; an empty file counts as done."""
        if self.total <= 0:
            return 100
        return min(100, self.done * 100 // self.total)

    @property
    def finished(self) -> bool:
        return self.done >= self.total


ProgressCallback = Callable[[Progress], None]


class CancellationToken:
    """Cancellation flag shared between the UI and a background operation."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TransferCancelledError("operation cancelled")


class ThrottledProgress:
    """Forwards progress at most once per interval.

    The first update of each file and its final update are always forwarded.
    """

    def __init__(self, sink: ProgressCallback, interval_ms: int = 100,
                 clock: Callable[[], float] = time.monotonic):
        self._sink = sink
        self._interval = interval_ms / 1000.0
        self._clock = clock
        self._lock = threading.Lock()
        self._current: Optional[Tuple[int, str]] = None
        self._last_sent = 0.0

    def __call__(self, progress: Progress) -> None:
        now = self._clock()
        key = (progress.file_index, progress.file_name)
        with self._lock:
            forward = (
                key != self._current
                or progress.finished
                or now - self._last_sent >= self._interval
            )
            if not forward:
                return
            self._current = key
            self._last_sent = now
        self._sink(progress)
