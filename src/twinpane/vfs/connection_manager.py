"""Registry of live remote sessions keyed by server name."""

import logging
import threading
from typing import Callable, Dict, List, Optional

from ..config.models import RemoteConfig, ServerConfig
from ..ftps.ftp_fs import FTPFileSystem
from ..sftp.sftp_fs import SFTPFileSystem
from .base import FileSystem
from .errors import UnsupportedOperationError


logger = logging.getLogger(__name__)

BackendFactory = Callable[[ServerConfig, RemoteConfig], FileSystem]


def default_factories() -> Dict[str, BackendFactory]:
    """Protocol name to backend constructor."""
    return {
        "sftp": SFTPFileSystem.connect,
        "ftp": FTPFileSystem.connect,
        "ftps": FTPFileSystem.connect,
    }


class ConnectionManager:
    """Opens, shares and closes remote sessions.

    At most one session exists per server name. A failed connect leaves no
    entry behind. The single lock is held while dialing, so two callers
    connecting to the same server share one session.
    """

    def __init__(self, remote_settings: Optional[RemoteConfig] = None,
                 factories: Optional[Dict[str, BackendFactory]] = None):
        """
        Initialize the connection manager.

        Args:
            remote_settings: Timeouts and FTP options passed to every backend
            factories: Protocol to backend constructor table; defaults to the
                SFTP and FTP backends
        """
        self.remote_settings = remote_settings or RemoteConfig()
        self._factories = factories if factories is not None else default_factories()
        self._sessions: Dict[str, FileSystem] = {}
        self._lock = threading.Lock()

    def connect(self, config: ServerConfig) -> FileSystem:
        """
        Return the session for ``config.name``, creating it when absent.

        Args:
            config: Server configuration

        Returns:
            FileSystem: The live session

        Raises:
            UnsupportedOperationError: If the protocol has no backend
            VFSConnectionError: If the backend cannot connect
        """
        with self._lock:
            session = self._sessions.get(config.name)
            if session is not None:
                logger.debug(f"Reusing session for {config.name}")
                return session

            factory = self._factories.get(config.protocol)
            if factory is None:
                raise UnsupportedOperationError(f"unknown protocol: {config.protocol}",
                                                operation="connect")

            session = factory(config, self.remote_settings)
            self._sessions[config.name] = session
            logger.info(f"Session {config.name} opened ({config.protocol})")
            return session

    def disconnect(self, name: str) -> None:
        """Close and forget the session for ``name``; no-op when absent."""
        with self._lock:
            session = self._sessions.pop(name, None)
            if session is None:
                return
            self._close_session(name, session)

    def is_connected(self, name: str) -> bool:
        with self._lock:
            return name in self._sessions

    def get(self, name: str) -> Optional[FileSystem]:
        with self._lock:
            return self._sessions.get(name)

    def connected_names(self) -> List[str]:
        with self._lock:
            return sorted(self._sessions)

    def disconnect_all(self) -> None:
        """Close every session. Close errors are logged, never raised."""
        with self._lock:
            sessions = list(self._sessions.items())
            self._sessions.clear()
            for name, session in sessions:
                self._close_session(name, session)
        if sessions:
            logger.info(f"Closed {len(sessions)} remote session(s)")

    def _close_session(self, name: str, session: FileSystem) -> None:
        try:
            session.close()
            logger.info(f"Session {name} closed")
        except Exception as e:
            logger.warning(f"Error closing session {name}: {e}")
