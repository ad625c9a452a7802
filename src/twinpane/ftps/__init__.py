"""FTP and FTPS module for remote file operations."""

from .ftp_fs import FTPDownloadStream, FTPFileSystem, FTPUploadStream, parse_list_line

__all__ = ['FTPDownloadStream', 'FTPFileSystem', 'FTPUploadStream', 'parse_list_line']
