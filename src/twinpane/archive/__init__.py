"""Archive creation, extraction and listing for local files."""

from .archiver import (
    ArchiveError, ArchiveFormat, UnsafeArchivePathError, create_archive, extract_archive,
    is_archive_name, list_archive, unique_extract_dir
)

__all__ = [
    'ArchiveError',
    'ArchiveFormat',
    'UnsafeArchivePathError',
    'create_archive',
    'extract_archive',
    'is_archive_name',
    'list_archive',
    'unique_extract_dir',
]
