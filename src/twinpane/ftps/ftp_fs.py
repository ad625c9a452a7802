"""FTP and FTPS filesystem backend built on ftplib."""

import calendar
import ftplib
import logging
import posixpath
import queue
import ssl
import stat
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import BinaryIO, Dict, Iterator, List, Optional

from ..config.models import RemoteConfig, ServerConfig
from ..scheduler.keepalive import KeepAliveTask
from ..utils.error_handler import handle_error, ErrorCategory, ErrorSeverity
from ..vfs.base import DirEntry, FileInfo, FileSystem
from ..vfs.errors import (
    AuthenticationError, UnsupportedOperationError, VFSConnectionError, VFSError,
    VFSNotFoundError, VFSPermissionError
)


logger = logging.getLogger(__name__)

# Reply codes for "command not implemented / not understood"
_UNSUPPORTED_CODES = ("500", "501", "502", "504")
_EXISTS_CODES = ("550", "521")
_SPOOL_MAX_SIZE = 8 * 1024 * 1024
_UPLOAD_QUEUE_SIZE = 16

_DIR_MODE = stat.S_IFDIR | 0o755
_FILE_MODE = stat.S_IFREG | 0o644
_LINK_MODE = stat.S_IFLNK | 0o777

_MONTHS = {name: index for index, name in enumerate(
    ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"], start=1)}


def _reply_code(error: BaseException) -> str:
    return str(error)[:3]


def _describe(operation: str, path: Optional[str], error: BaseException) -> str:
    detail = str(error) or type(error).__name__
    if path:
        return f"{operation} {path}: {detail}"
    return f"{operation}: {detail}"


@contextmanager
def _ftp_errors(operation: str, path: Optional[str] = None) -> Iterator[None]:
    """Translate ftplib and socket errors into VFS errors."""
    try:
        yield
    except VFSError:
        raise
    except ftplib.error_perm as e:
        code = _reply_code(e)
        message = _describe(operation, path, e)
        lowered = str(e).lower()
        if code in ("530", "532", "533") or (code == "550" and ("denied" in lowered or "permission" in lowered)):
            raise VFSPermissionError(message, path, operation) from e
        if code == "550":
            raise VFSNotFoundError(message, path, operation) from e
        raise VFSError(message, path, operation) from e
    except ftplib.error_temp as e:
        raise VFSError(_describe(operation, path, e), path, operation) from e
    except (ftplib.error_reply, ftplib.error_proto, EOFError, OSError) as e:
        raise VFSConnectionError(_describe(operation, path, e), path, operation) from e


def _parse_modify(value: Optional[str]) -> float:
    """Parse an MLSD ``modify`` fact (``YYYYMMDDHHMMSS[.sss]``, UTC)."""
    if not value:
        return 0.0
    try:
        parsed = datetime.strptime(value[:14], "%Y%m%d%H%M%S")
    except ValueError:
        logger.debug(f"Unparseable modify fact: {value}")
        return 0.0
    return float(calendar.timegm(parsed.timetuple()))


def _entry_from_facts(name: str, facts: Dict[str, str]) -> Optional[DirEntry]:
    """Build a directory entry from MLSD/MLST facts; ``None`` for cdir/pdir."""
    kind = facts.get("type", "file").lower()
    if kind in ("cdir", "pdir"):
        return None

    is_dir = kind == "dir"
    is_symlink = kind.startswith("os.unix=slink") or kind.startswith("os.unix=symlink")
    target = kind.partition(":")[2] if is_symlink else ""

    if is_dir:
        mode = _DIR_MODE
    elif is_symlink:
        mode = _LINK_MODE
    else:
        mode = _FILE_MODE

    unix_mode = facts.get("unix.mode")
    if unix_mode:
        try:
            mode = stat.S_IFMT(mode) | (int(unix_mode, 8) & 0o7777)
        except ValueError:
            pass

    try:
        size = int(facts.get("size", facts.get("sizd", 0)))
    except ValueError:
        size = 0

    return DirEntry(name=name, size=size, mtime=_parse_modify(facts.get("modify")),
                    mode=mode, is_dir=is_dir, is_symlink=is_symlink, link_target=target)


def _parse_mlst_response(response: str) -> Dict[str, str]:
    """Extract the fact line of a multi-line ``MLST`` reply."""
    for line in response.splitlines():
        if line.startswith(" "):
            facts_part = line.strip().partition(" ")[0]
            facts = {}
            for fact in facts_part.rstrip(";").split(";"):
                key, _, value = fact.partition("=")
                if key:
                    facts[key.lower()] = value
            return facts
    raise VFSError(f"Malformed MLST reply: {response!r}", operation="stat")


def _mode_from_permissions(perms: str) -> int:
    kind = perms[0]
    if kind == "d":
        mode = stat.S_IFDIR
    elif kind == "l":
        mode = stat.S_IFLNK
    else:
        mode = stat.S_IFREG

    bits = 0
    for index, char in enumerate(perms[1:10]):
        if char not in "-STl":
            bits |= 1 << (8 - index)
    if perms[3:4] in ("s", "S"):
        bits |= stat.S_ISUID
    if perms[6:7] in ("s", "S"):
        bits |= stat.S_ISGID
    if perms[9:10] in ("t", "T"):
        bits |= stat.S_ISVTX
    return mode | bits


def _parse_list_time(month: str, day: str, year_or_time: str) -> float:
    month_number = _MONTHS.get(month[:3].lower())
    if month_number is None:
        return 0.0
    try:
        if ":" in year_or_time:
            hour, minute = (int(part) for part in year_or_time.split(":", 1))
            now = datetime.now(timezone.utc)
            when = datetime(now.year, month_number, int(day), hour, minute)
            # Listings omit the year for the last six months
            if when > now.replace(tzinfo=None):
                when = when.replace(year=now.year - 1)
        else:
            when = datetime(int(year_or_time), month_number, int(day))
    except ValueError:
        return 0.0
    return float(calendar.timegm(when.timetuple()))


def parse_list_line(line: str) -> Optional[DirEntry]:
    """Parse one line of a Unix-style ``LIST`` reply.

    Returns ``None`` for totals, ``.``/``..`` and lines in other formats.
    """
    parts = line.split(None, 8)
    if len(parts) < 9 or len(parts[0]) < 10 or parts[0][0] not in "-dlbcps":
        return None

    perms, _, _, _, size, month, day, year_or_time, name = parts
    mode = _mode_from_permissions(perms)
    is_symlink = stat.S_ISLNK(mode)
    target = ""
    if is_symlink and " -> " in name:
        name, target = name.split(" -> ", 1)

    if name in (".", ".."):
        return None

    try:
        size_value = int(size)
    except ValueError:
        size_value = 0

    return DirEntry(name=name, size=size_value, mtime=_parse_list_time(month, day, year_or_time),
                    mode=mode, is_dir=stat.S_ISDIR(mode), is_symlink=is_symlink, link_target=target)


class _StoreFeeder:
    """File-like reader handed to ``storbinary``, fed from a bounded queue."""

    def __init__(self, chunks: "queue.Queue[Optional[bytes]]"):
        self._chunks = chunks
        self._buffer = b""
        self._eof = False

    def read(self, size: int = -1) -> bytes:
        while not self._buffer and not self._eof:
            chunk = self._chunks.get()
            if chunk is None:
                self._eof = True
            else:
                self._buffer = chunk
        if size is None or size < 0:
            size = len(self._buffer)
        data, self._buffer = self._buffer[:size], self._buffer[size:]
        return data


class FTPUploadStream:
    """Writable stream whose data is stored by a background ``STOR``.

    ``close()`` waits for the store to finish and raises its error, if any.
    """

    def __init__(self, fs: "FTPFileSystem", path: str):
        self.path = path
        self._fs = fs
        self._chunks: "queue.Queue[Optional[bytes]]" = queue.Queue(maxsize=_UPLOAD_QUEUE_SIZE)
        self._error: Optional[BaseException] = None
        self._closed = False
        self._thread = threading.Thread(target=self._store, name=f"ftp-stor-{posixpath.basename(path)}",
                                        daemon=True)
        self._thread.start()

    def _store(self) -> None:
        feeder = _StoreFeeder(self._chunks)
        try:
            self._fs._store(self.path, feeder)
        except BaseException as e:
            self._error = e
            # Unblock a writer waiting on a full queue
            while True:
                try:
                    self._chunks.get_nowait()
                except queue.Empty:
                    break

    def writable(self) -> bool:
        return True

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, data: bytes) -> int:
        if self._closed:
            raise ValueError("write to closed upload stream")
        if self._error is not None:
            raise self._error
        if not data:
            return 0
        chunk = bytes(data)
        while True:
            try:
                self._chunks.put(chunk, timeout=0.1)
                break
            except queue.Full:
                if self._error is not None:
                    raise self._error
                if not self._thread.is_alive():
                    raise VFSConnectionError(f"store {self.path}: upload stopped", self.path, "store")
        return len(chunk)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        while self._thread.is_alive():
            try:
                self._chunks.put(None, timeout=0.1)
                break
            except queue.Full:
                continue
        self._thread.join()
        if self._error is not None:
            raise self._error

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class FTPDownloadStream:
    """Readable stream over the data connection of a running ``RETR``.

    The session's control connection stays busy until :meth:`close`, which
    collects the server's final reply. Closing before the end aborts the
    transfer.
    """

    def __init__(self, fs: "FTPFileSystem", path: str):
        self.path = path
        self._fs = fs
        self._conn = fs._start_download(path)
        self._eof = False

    def readable(self) -> bool:
        return True

    @property
    def closed(self) -> bool:
        return self._conn is None

    def read(self, size: int = -1) -> bytes:
        if self._conn is None:
            raise ValueError("read from closed download stream")
        if self._eof:
            return b""
        if size is None or size < 0:
            parts = []
            while True:
                block = self._recv(64 * 1024)
                if not block:
                    return b"".join(parts)
                parts.append(block)
        return self._recv(size)

    def _recv(self, size: int) -> bytes:
        with _ftp_errors("read", self.path):
            data = self._conn.recv(size)
        if not data:
            self._eof = True
        return data

    def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        self._fs._finish_download(self.path, conn, complete=self._eof)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class FTPFileSystem(FileSystem):
    """FileSystem over one FTP or FTPS control connection.

    Every protocol call holds ``self._lock``; the lock never spans more than
    one call. A streaming download counts as one call and holds the lock
    until its reader is closed; the keep-alive skips its NOOP meanwhile.
    """

    def __init__(self, client: ftplib.FTP, name: str = "", keepalive_seconds: float = 60):
        self._client = client
        self.name = name
        self._lock = threading.Lock()
        self._closed = False
        self._keepalive = KeepAliveTask(self._noop, keepalive_seconds, name=f"ftp-keepalive-{name}")
        self._keepalive.start()

    @classmethod
    def connect(cls, config: ServerConfig, settings: Optional[RemoteConfig] = None) -> "FTPFileSystem":
        """
        Connect and log in to an FTP or explicit-TLS FTPS server.

        Args:
            config: Server configuration (protocol ``ftp`` or ``ftps``)
            settings: Remote backend settings (timeout, passive mode, keep-alive)

        Returns:
            FTPFileSystem: Connected filesystem

        Raises:
            AuthenticationError: If the server rejects the login
            VFSConnectionError: If the server cannot be reached
        """
        settings = settings or RemoteConfig()
        use_tls = config.protocol == "ftps"

        logger.info(f"Connecting to {config.protocol.upper()} server {config.name} ({config.address})")

        if use_tls:
            # Certificates are not verified, matching the SFTP host key policy
            context = ssl.create_default_context()
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
            client = ftplib.FTP_TLS(context=context, timeout=settings.connect_timeout)
        else:
            client = ftplib.FTP(timeout=settings.connect_timeout)

        try:
            client.connect(config.host, config.effective_port, timeout=settings.connect_timeout)
            client.login(config.user, config.password or "")
            if use_tls:
                client.prot_p()
            client.set_pasv(settings.ftp_passive)
        except ftplib.error_perm as e:
            client.close()
            category = ErrorCategory.AUTHENTICATION if _reply_code(e) == "530" else ErrorCategory.CONNECTION
            handle_error(
                error=e,
                category=category,
                severity=ErrorSeverity.HIGH,
                component="FTPFileSystem",
                operation="connect",
                additional_data={"server": config.name, "host": config.host, "user": config.user}
            )
            if category == ErrorCategory.AUTHENTICATION:
                raise AuthenticationError(f"FTP login {config.name}: {e}", operation="connect") from e
            raise VFSConnectionError(f"FTP connect {config.address}: {e}", operation="connect") from e
        except (ftplib.Error, OSError, EOFError) as e:
            client.close()
            handle_error(
                error=e,
                category=ErrorCategory.CONNECTION,
                severity=ErrorSeverity.HIGH,
                component="FTPFileSystem",
                operation="connect",
                additional_data={"server": config.name, "address": config.address, "use_tls": use_tls}
            )
            raise VFSConnectionError(f"FTP dial {config.address}: {e}", operation="connect") from e

        logger.info(f"Successfully connected to {config.protocol.upper()} server {config.name}")
        return cls(client, name=config.name, keepalive_seconds=settings.ftp_keepalive_seconds)

    def _noop(self) -> None:
        # A running transfer already keeps the session alive
        if not self._lock.acquire(blocking=False):
            logger.debug(f"{self.name}: control connection busy, skipping NOOP")
            return
        try:
            self._client.voidcmd("NOOP")
        finally:
            self._lock.release()

    def _start_download(self, path: str):
        """Send ``RETR`` and return the data connection; the lock stays held."""
        self._lock.acquire()
        try:
            with _ftp_errors("open", path):
                self._client.voidcmd("TYPE I")
                return self._client.transfercmd(f"RETR {path}")
        except BaseException:
            self._lock.release()
            raise

    def _finish_download(self, path: str, conn, complete: bool) -> None:
        """Close the data connection, read the final reply and release the lock."""
        try:
            if not complete:
                conn.close()
                try:
                    self._client.voidresp()
                except (ftplib.Error, OSError, EOFError) as e:
                    logger.debug(f"RETR {path} aborted: {e}")
                return

            if isinstance(conn, ssl.SSLSocket):
                try:
                    conn.unwrap()
                except (ssl.SSLError, OSError) as e:
                    logger.debug(f"TLS shutdown of data connection for {path} failed: {e}")
            conn.close()
            with _ftp_errors("read", path):
                self._client.voidresp()
        finally:
            self._lock.release()

    def _store(self, path: str, reader: _StoreFeeder) -> None:
        with _ftp_errors("store", path):
            with self._lock:
                self._client.storbinary(f"STOR {path}", reader)

    # -- listing and metadata ---------------------------------------------

    def read_dir(self, path: str) -> List[DirEntry]:
        with _ftp_errors("read directory", path):
            try:
                with self._lock:
                    listing = list(self._client.mlsd(path))
            except ftplib.error_perm as e:
                if _reply_code(e) not in _UNSUPPORTED_CODES:
                    raise
                logger.debug(f"MLSD not supported on {self.name}, falling back to LIST: {e}")
                return self._read_dir_list(path)

        entries = []
        for name, facts in listing:
            if name in (".", ".."):
                continue
            entry = _entry_from_facts(name, {k.lower(): v for k, v in facts.items()})
            if entry is not None:
                entries.append(entry)
        return entries

    def _read_dir_list(self, path: str) -> List[DirEntry]:
        lines: List[str] = []
        with _ftp_errors("read directory", path):
            with self._lock:
                self._client.retrlines(f"LIST {path}", lines.append)

        entries = []
        for line in lines:
            entry = parse_list_line(line)
            if entry is None:
                logger.debug(f"Skipping LIST line: {line!r}")
                continue
            entries.append(entry)
        return entries

    def stat(self, path: str) -> FileInfo:
        name = posixpath.basename(path.rstrip("/")) or path
        if path.rstrip("/") == "":
            return FileInfo(name="/", size=0, mtime=0.0, mode=_DIR_MODE, is_dir=True)

        with _ftp_errors("stat", path):
            try:
                with self._lock:
                    response = self._client.sendcmd(f"MLST {path}")
            except ftplib.error_perm as e:
                if _reply_code(e) not in _UNSUPPORTED_CODES:
                    raise
                return self._stat_from_parent(path, name)

        entry = _entry_from_facts(name, _parse_mlst_response(response))
        if entry is None:
            # cdir/pdir for the directory itself
            return FileInfo(name=name, size=0, mtime=0.0, mode=_DIR_MODE, is_dir=True)
        return FileInfo(name=name, size=entry.size, mtime=entry.mtime, mode=entry.mode, is_dir=entry.is_dir)

    def _stat_from_parent(self, path: str, name: str) -> FileInfo:
        parent = posixpath.dirname(path.rstrip("/")) or "/"
        for entry in self.read_dir(parent):
            if entry.name == name:
                return FileInfo(name=name, size=entry.size, mtime=entry.mtime,
                                mode=entry.mode, is_dir=entry.is_dir)
        raise VFSNotFoundError(f"stat {path}: no such file or directory", path, "stat")

    def lstat(self, path: str) -> FileInfo:
        return self.stat(path)

    def readlink(self, path: str) -> str:
        raise UnsupportedOperationError(f"read link {path}: symlinks are not supported over FTP",
                                        path, "read link")

    # -- streaming --------------------------------------------------------

    def open_read(self, path: str) -> BinaryIO:
        """Stream the file; the control connection is busy until the reader is closed."""
        return FTPDownloadStream(self, path)

    def open_read_detached(self, path: str) -> BinaryIO:
        """Retrieve the file into a spooled buffer and return it rewound.

        The control connection is free again when this returns, so the same
        session can store while the caller reads.
        """
        spool = tempfile.SpooledTemporaryFile(max_size=_SPOOL_MAX_SIZE)
        try:
            with _ftp_errors("open", path):
                with self._lock:
                    self._client.retrbinary(f"RETR {path}", spool.write)
        except BaseException:
            spool.close()
            raise
        spool.seek(0)
        return spool

    def create(self, path: str, mode: int = 0o644) -> BinaryIO:
        # FTP has no portable way to set the mode on upload
        return FTPUploadStream(self, path)

    # -- mutation ---------------------------------------------------------

    def mkdir_all(self, path: str, mode: int = 0o755) -> None:
        current = "/" if path.startswith("/") else ""
        for part in path.split("/"):
            if not part:
                continue
            current = posixpath.join(current, part)
            try:
                with _ftp_errors("create directory", current):
                    with self._lock:
                        self._client.mkd(current)
            except VFSError as e:
                if self._directory_exists(current, e):
                    continue
                raise

    def _directory_exists(self, path: str, error: VFSError) -> bool:
        cause = error.__cause__
        code = _reply_code(cause) if cause is not None else ""
        if code in _EXISTS_CODES:
            try:
                return self.stat(path).is_dir
            except VFSNotFoundError:
                return False
            except VFSError as e:
                logger.debug(f"Could not confirm {path} exists: {e}")
        return "exist" in str(error).lower()

    def remove(self, path: str) -> None:
        info = self.stat(path)
        with _ftp_errors("remove", path):
            with self._lock:
                if info.is_dir:
                    self._client.rmd(path)
                else:
                    self._client.delete(path)

    def remove_all(self, path: str) -> None:
        try:
            info = self.stat(path)
        except VFSNotFoundError:
            return

        if not info.is_dir:
            with _ftp_errors("remove", path):
                with self._lock:
                    self._client.delete(path)
            return

        for entry in self.read_dir(path):
            child = posixpath.join(path, entry.name)
            if entry.is_dir and not entry.is_symlink:
                self.remove_all(child)
            else:
                with _ftp_errors("remove", child):
                    with self._lock:
                        self._client.delete(child)

        try:
            with self._lock:
                self._client.sendcmd(f"RMDA {path}")
            return
        except ftplib.error_perm as e:
            logger.debug(f"RMDA {path} rejected, falling back to RMD: {e}")
        except (ftplib.error_temp, ftplib.error_reply) as e:
            logger.debug(f"RMDA {path} failed, falling back to RMD: {e}")

        with _ftp_errors("remove directory", path):
            with self._lock:
                self._client.rmd(path)

    def rename(self, old_path: str, new_path: str) -> None:
        with _ftp_errors("rename", old_path):
            with self._lock:
                self._client.rename(old_path, new_path)

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
        """Stop the keep-alive and quit the session."""
        with self._lock:
            if self._closed:
                return
            self._closed = True

        self._keepalive.stop()
        with self._lock:
            try:
                self._client.quit()
            except (ftplib.Error, OSError, EOFError) as e:
                logger.warning(f"Error closing FTP connection: {e}")
                self._client.close()
        logger.info(f"FTP session {self.name} closed")

    def __repr__(self) -> str:
        return f"FTPFileSystem({self.name!r})"

