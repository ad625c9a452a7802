"""Virtual filesystem layer: the backend contract, errors and the local disk."""

from .base import DirEntry, FileInfo, FileSystem, WalkCallback
from .errors import (
    VFSError, VFSNotFoundError, VFSPermissionError, VFSConnectionError,
    AuthenticationError, UnsupportedOperationError, TransferCancelledError,
    translate_errors
)
from .local import LocalFileSystem

__all__ = [
    'DirEntry',
    'FileInfo',
    'FileSystem',
    'WalkCallback',
    'VFSError',
    'VFSNotFoundError',
    'VFSPermissionError',
    'VFSConnectionError',
    'AuthenticationError',
    'UnsupportedOperationError',
    'TransferCancelledError',
    'translate_errors',
    'LocalFileSystem',
]
