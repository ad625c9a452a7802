"""SFTP module for remote file operations."""

from .sftp_fs import SFTPFileSystem

__all__ = ['SFTPFileSystem']
