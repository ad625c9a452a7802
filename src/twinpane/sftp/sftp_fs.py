"""SFTP filesystem backend built on paramiko."""

import logging
import os
import posixpath
import stat
import threading
from contextlib import contextmanager
from typing import BinaryIO, Iterator, List, Optional

import paramiko
from paramiko import SFTPAttributes, SFTPClient, SSHClient

from ..config.models import RemoteConfig, ServerConfig
from ..utils.error_handler import handle_error, ErrorCategory, ErrorSeverity
from ..vfs.base import DirEntry, FileInfo, FileSystem
from ..vfs.errors import (
    AuthenticationError, VFSConnectionError, VFSError, VFSNotFoundError, translate_errors
)


logger = logging.getLogger(__name__)


@contextmanager
def _sftp_errors(operation: str, path: Optional[str] = None) -> Iterator[None]:
    """Translate paramiko and OS errors into VFS errors."""
    try:
        with translate_errors(operation, path):
            yield
    except (paramiko.SSHException, EOFError) as e:
        raise VFSConnectionError(f"{operation} {path or ''}: {e or 'connection lost'}".strip(),
                                 path, operation) from e


def _info_from_attr(name: str, attr: SFTPAttributes) -> FileInfo:
    mode = attr.st_mode or 0
    return FileInfo(
        name=name,
        size=attr.st_size or 0,
        mtime=float(attr.st_mtime or 0),
        mode=mode,
        is_dir=stat.S_ISDIR(mode),
    )


class SFTPFileSystem(FileSystem):
    """FileSystem over a single SSH connection carrying one SFTP channel."""

    def __init__(self, ssh_client: SSHClient, sftp_client: SFTPClient, name: str = ""):
        self._ssh_client = ssh_client
        self._sftp = sftp_client
        self.name = name
        self._closed = False
        self._close_lock = threading.Lock()

    @classmethod
    def connect(cls, config: ServerConfig, settings: Optional[RemoteConfig] = None) -> "SFTPFileSystem":
        """
        Establish an SFTP session for the given server.

        Authentication prefers the private key (when ``key_path`` is set and
        readable) and falls back to the password.

        Args:
            config: Server configuration
            settings: Remote backend settings (timeouts)

        Returns:
            SFTPFileSystem: Connected filesystem

        Raises:
            AuthenticationError: If no credential is configured or all are rejected
            VFSConnectionError: If the server cannot be reached
        """
        settings = settings or RemoteConfig()
        key_filename = None

        if config.key_path:
            key_path = os.path.expanduser(config.key_path)
            if os.path.isfile(key_path):
                key_filename = key_path
            else:
                logger.warning(f"Private key {key_path} for {config.name} is not readable, skipping")

        if key_filename is None and not config.password:
            raise AuthenticationError(f"No authentication method configured for {config.name}",
                                      operation="connect")

        logger.info(f"Connecting to SFTP server {config.name} ({config.address})")

        client = SSHClient()
        # Host keys are trusted on first connect; there is no known_hosts check.
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        try:
            client.connect(
                hostname=config.host,
                port=config.effective_port,
                username=config.user,
                password=config.password or None,
                key_filename=key_filename,
                allow_agent=False,
                look_for_keys=False,
                timeout=settings.connect_timeout,
                banner_timeout=settings.connect_timeout,
                auth_timeout=settings.connect_timeout,
            )
            sftp = client.open_sftp()
        except paramiko.AuthenticationException as e:
            client.close()
            handle_error(
                error=e,
                category=ErrorCategory.AUTHENTICATION,
                severity=ErrorSeverity.HIGH,
                component="SFTPFileSystem",
                operation="connect",
                additional_data={"server": config.name, "host": config.host, "user": config.user}
            )
            raise AuthenticationError(f"Authentication failed for {config.name}: {e}",
                                      operation="connect") from e
        except (paramiko.SSHException, OSError, EOFError) as e:
            client.close()
            handle_error(
                error=e,
                category=ErrorCategory.CONNECTION,
                severity=ErrorSeverity.HIGH,
                component="SFTPFileSystem",
                operation="connect",
                additional_data={"server": config.name, "address": config.address}
            )
            raise VFSConnectionError(f"SSH connect {config.address}: {e}", operation="connect") from e

        logger.info(f"Successfully connected to SFTP server {config.name}")
        return cls(client, sftp, name=config.name)

    # -- listing and metadata ---------------------------------------------

    def read_dir(self, path: str) -> List[DirEntry]:
        with _sftp_errors("read directory", path):
            attrs = self._sftp.listdir_attr(path)

        entries: List[DirEntry] = []
        for attr in attrs:
            info = _info_from_attr(attr.filename, attr)
            if not stat.S_ISLNK(info.mode):
                entries.append(DirEntry(name=info.name, size=info.size, mtime=info.mtime,
                                        mode=info.mode, is_dir=info.is_dir))
                continue

            child = posixpath.join(path, attr.filename)
            target = ""
            try:
                target = self._sftp.readlink(child) or ""
            except (IOError, paramiko.SSHException) as e:
                logger.debug(f"readlink {child} failed: {e}")
            try:
                info = _info_from_attr(attr.filename, self._sftp.stat(child))
            except (IOError, paramiko.SSHException) as e:
                logger.debug(f"Could not resolve symlink {child}: {e}")
                info = FileInfo(name=attr.filename, size=0, mtime=0.0, mode=info.mode, is_dir=False)
            entries.append(DirEntry(name=info.name, size=info.size, mtime=info.mtime,
                                    mode=info.mode, is_dir=info.is_dir,
                                    is_symlink=True, link_target=target))
        return entries

    def stat(self, path: str) -> FileInfo:
        with _sftp_errors("stat", path):
            return _info_from_attr(posixpath.basename(path) or path, self._sftp.stat(path))

    def lstat(self, path: str) -> FileInfo:
        with _sftp_errors("lstat", path):
            return _info_from_attr(posixpath.basename(path) or path, self._sftp.lstat(path))

    def readlink(self, path: str) -> str:
        with _sftp_errors("read link", path):
            target = self._sftp.readlink(path)
        if target is None:
            raise VFSError(f"read link {path}: not a symlink", path, "read link")
        return target

    # -- streaming --------------------------------------------------------

    def open_read(self, path: str) -> BinaryIO:
        with _sftp_errors("open", path):
            return self._sftp.open(path, "rb")

    def create(self, path: str, mode: int = 0o644) -> BinaryIO:
        with _sftp_errors("create", path):
            handle = self._sftp.open(path, "wb")
        try:
            self._sftp.chmod(path, mode)
        except (IOError, paramiko.SSHException) as e:
            # Some servers refuse chmod; the file is still usable
            logger.debug(f"chmod {path} to {oct(mode)} failed: {e}")
        return handle

    # -- mutation ---------------------------------------------------------

    def mkdir_all(self, path: str, mode: int = 0o755) -> None:
        current = "/" if path.startswith("/") else ""
        for part in path.split("/"):
            if not part:
                continue
            current = posixpath.join(current, part)
            try:
                info = self.stat(current)
            except VFSNotFoundError:
                try:
                    with _sftp_errors("create directory", current):
                        self._sftp.mkdir(current, mode)
                except VFSError:
                    # Created concurrently by someone else?
                    if not self._is_dir(current):
                        raise
                continue
            if not info.is_dir:
                raise VFSError(f"create directory {current}: not a directory", current, "create directory")

    def _is_dir(self, path: str) -> bool:
        try:
            return self.stat(path).is_dir
        except VFSError:
            return False

    def remove(self, path: str) -> None:
        info = self.lstat(path)
        with _sftp_errors("remove", path):
            if info.is_dir:
                self._sftp.rmdir(path)
            else:
                self._sftp.remove(path)

    def remove_all(self, path: str) -> None:
        """Remove recursively; the SFTP directory delete is not recursive."""
        try:
            info = self.lstat(path)
        except VFSNotFoundError:
            return

        if not info.is_dir:
            with _sftp_errors("remove", path):
                self._sftp.remove(path)
            return

        for entry in self.read_dir(path):
            self.remove_all(posixpath.join(path, entry.name))

        with _sftp_errors("remove directory", path):
            self._sftp.rmdir(path)

    def rename(self, old_path: str, new_path: str) -> None:
        with _sftp_errors("rename", old_path):
            self._sftp.rename(old_path, new_path)

    # -- paths ------------------------------------------------------------

    def join(self, *parts: str) -> str:
        return posixpath.join(*parts)

    def dirname(self, path: str) -> str:
        return posixpath.dirname(path)

    def basename(self, path: str) -> str:
        return posixpath.basename(path)

    @property
    def is_local(self) -> bool:
        return False

    def close(self) -> None:
        """Close the SFTP channel and the SSH connection."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        try:
            self._sftp.close()
        except Exception as e:
            logger.warning(f"Error closing SFTP client: {e}")
        try:
            self._ssh_client.close()
        except Exception as e:
            logger.warning(f"Error closing SSH client: {e}")
        logger.info(f"SFTP session {self.name} closed")

    def __repr__(self) -> str:
        return f"SFTPFileSystem({self.name!r})"
