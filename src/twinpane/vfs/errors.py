"""Exceptions raised by filesystem backends."""

import errno
from contextlib import contextmanager
from typing import Iterator, Optional


class VFSError(Exception):
    """Base exception for filesystem operations.

    Carries the operation name and path so the UI can show what failed.
    """

    def __init__(self, message: str, path: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message)
        self.path = path
        self.operation = operation


class VFSNotFoundError(VFSError):
    """Raised when the target path does not exist."""
    pass


class VFSPermissionError(VFSError):
    """Raised when the backend denies access."""
    pass


class VFSConnectionError(VFSError):
    """Raised when a remote session cannot be established or is lost."""
    pass


class AuthenticationError(VFSConnectionError):
    """Raised when no usable credential is configured or all are rejected."""
    pass


class UnsupportedOperationError(VFSError):
    """Raised when a backend cannot perform the requested operation."""
    pass


class TransferCancelledError(Exception):
    """Raised when a transfer was cancelled by the user."""
    pass


def _describe(operation: str, path: Optional[str], error: BaseException) -> str:
    detail = getattr(error, "strerror", None) or str(error) or type(error).__name__
    if path:
        return f"{operation} {path}: {detail}"
    return f"{operation}: {detail}"


@contextmanager
def translate_errors(operation: str, path: Optional[str] = None) -> Iterator[None]:
    """Map ``OSError`` raised inside the block onto the VFS error taxonomy.

    Works for the local disk and for paramiko, which reports SFTP status codes
    as ``IOError`` with a matching ``errno``.
    """
    try:
        yield
    except VFSError:
        raise
    except FileNotFoundError as e:
        raise VFSNotFoundError(_describe(operation, path, e), path, operation) from e
    except PermissionError as e:
        raise VFSPermissionError(_describe(operation, path, e), path, operation) from e
    except OSError as e:
        if e.errno == errno.ENOENT:
            raise VFSNotFoundError(_describe(operation, path, e), path, operation) from e
        if e.errno in (errno.EACCES, errno.EPERM):
            raise VFSPermissionError(_describe(operation, path, e), path, operation) from e
        raise VFSError(_describe(operation, path, e), path, operation) from e
