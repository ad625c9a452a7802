"""File operations that work across every filesystem backend."""

from .progress import CancellationToken, Progress, ProgressCallback, ThrottledProgress
from .transfer import DEFAULT_CHUNK_SIZE, TransferEngine

__all__ = [
    'CancellationToken',
    'Progress',
    'ProgressCallback',
    'ThrottledProgress',
    'DEFAULT_CHUNK_SIZE',
    'TransferEngine',
]
