"""Configuration data models for the twinpane file manager core."""

from dataclasses import dataclass
from typing import Optional


SUPPORTED_PROTOCOLS = ("sftp", "ftp", "ftps")

DEFAULT_PORTS = {
    "sftp": 22,
    "ftp": 21,
    "ftps": 21,
}


@dataclass
class ServerConfig:
    """Connection parameters for one remote server.

    ``name`` is the logical key the connection manager uses; ``port`` 0 means
    the protocol default.
    """
    name: str
    protocol: str
    host: str
    user: str
    port: int = 0
    password: Optional[str] = None
    key_path: Optional[str] = None

    @property
    def effective_port(self) -> int:
        """Return the configured port or the protocol default."""
        if self.port:
            return self.port
        return DEFAULT_PORTS.get(self.protocol, 0)

    @property
    def address(self) -> str:
        return f"{self.host}:{self.effective_port}"


@dataclass
class LoggingConfig:
    """Configuration for log output."""
    log_dir: str = "./data/logs"
    console_level: str = "INFO"
    file_level: str = "DEBUG"
    enable_colors: bool = True


@dataclass
class TransferConfig:
    """Configuration for the transfer engine and background work."""
    chunk_size: int = 32 * 1024
    progress_interval_ms: int = 100
    workers: int = 4


@dataclass
class RemoteConfig:
    """Configuration shared by the remote backends."""
    connect_timeout: float = 15.0
    ftp_keepalive_seconds: int = 60
    ftp_passive: bool = True


@dataclass
class AppSettings:
    """All runtime settings of the core, grouped by concern."""
    logging: LoggingConfig
    transfer: TransferConfig
    remote: RemoteConfig

    @classmethod
    def defaults(cls) -> "AppSettings":
        return cls(logging=LoggingConfig(), transfer=TransferConfig(), remote=RemoteConfig())
