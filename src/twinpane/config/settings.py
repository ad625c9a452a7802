"""Configuration manager for the twinpane file manager core."""

import os
from typing import Dict, Any, List, Optional
from dotenv import load_dotenv

from .models import (
    SUPPORTED_PROTOCOLS,
    AppSettings, LoggingConfig, RemoteConfig, ServerConfig, TransferConfig
)


ENV_PREFIX = "TWINPANE_"


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}")


def _env_float(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}")


class ConfigManager:
    """Loads and validates settings and server definitions from the environment."""

    def __init__(self, env_file: Optional[str] = None, load_env: bool = True):
        """Initialize the configuration manager.

        Args:
            env_file: Explicit path to a ``.env`` file (default: search from cwd)
            load_env: Whether to read a ``.env`` file at all
        """
        if load_env:
            load_dotenv(env_file)
        self._config = self._load_config()
        self._validate_config()
        self._servers = self._load_servers()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        return {
            # Logging
            'LOG_DIR': os.getenv(ENV_PREFIX + 'LOG_DIR', './data/logs'),
            'LOG_LEVEL': os.getenv(ENV_PREFIX + 'LOG_LEVEL', 'INFO').upper(),
            'LOG_COLORS': _env_bool(os.getenv(ENV_PREFIX + 'LOG_COLORS'), True),

            # Transfer engine
            'COPY_CHUNK_SIZE': _env_int(ENV_PREFIX + 'COPY_CHUNK_SIZE', 32 * 1024),
            'PROGRESS_INTERVAL_MS': _env_int(ENV_PREFIX + 'PROGRESS_INTERVAL_MS', 100),
            'WORKERS': _env_int(ENV_PREFIX + 'WORKERS', 4),

            # Remote backends
            'CONNECT_TIMEOUT': _env_float(ENV_PREFIX + 'CONNECT_TIMEOUT', 15.0),
            'FTP_KEEPALIVE_SECONDS': _env_int(ENV_PREFIX + 'FTP_KEEPALIVE_SECONDS', 60),
            'FTP_PASSIVE': _env_bool(os.getenv(ENV_PREFIX + 'FTP_PASSIVE'), True),

            # Server names, comma separated
            'SERVERS': os.getenv(ENV_PREFIX + 'SERVERS', ''),
        }

    def _validate_config(self) -> None:
        """Validate the loaded values."""
        if self._config['LOG_LEVEL'] not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ConfigurationError(f"Unknown log level: {self._config['LOG_LEVEL']}")

        if self._config['COPY_CHUNK_SIZE'] < 1024:
            raise ConfigurationError("TWINPANE_COPY_CHUNK_SIZE must be at least 1024 bytes")

        if self._config['PROGRESS_INTERVAL_MS'] < 0:
            raise ConfigurationError("TWINPANE_PROGRESS_INTERVAL_MS must not be negative")

        if self._config['WORKERS'] < 1:
            raise ConfigurationError("TWINPANE_WORKERS must be at least 1")

        if self._config['CONNECT_TIMEOUT'] <= 0:
            raise ConfigurationError("TWINPANE_CONNECT_TIMEOUT must be positive")

        if self._config['FTP_KEEPALIVE_SECONDS'] < 1:
            raise ConfigurationError("TWINPANE_FTP_KEEPALIVE_SECONDS must be at least 1")

    def _load_servers(self) -> Dict[str, ServerConfig]:
        """Build a ServerConfig for every name listed in TWINPANE_SERVERS."""
        servers: Dict[str, ServerConfig] = {}
        names = [n.strip() for n in self._config['SERVERS'].split(',') if n.strip()]

        for name in names:
            key = f"{ENV_PREFIX}SERVER_{name.upper().replace('-', '_')}_"
            protocol = os.getenv(key + 'PROTOCOL', 'sftp').strip().lower()
            host = os.getenv(key + 'HOST')
            user = os.getenv(key + 'USER', '')
            port = _env_int(key + 'PORT', 0)

            if protocol not in SUPPORTED_PROTOCOLS:
                raise ConfigurationError(
                    f"{key}PROTOCOL must be one of {', '.join(SUPPORTED_PROTOCOLS)}, got {protocol!r}"
                )
            if not host:
                raise ConfigurationError(f"Missing required environment variable: {key}HOST")
            if not (0 <= port <= 65535):
                raise ConfigurationError(f"{key}PORT must be between 0 and 65535")

            servers[name] = ServerConfig(
                name=name,
                protocol=protocol,
                host=host,
                port=port,
                user=user,
                password=os.getenv(key + 'PASSWORD') or None,
                key_path=os.getenv(key + 'KEY_PATH') or None,
            )
        return servers

    def get_logging_config(self) -> LoggingConfig:
        """Get logging configuration."""
        return LoggingConfig(
            log_dir=self._config['LOG_DIR'],
            console_level=self._config['LOG_LEVEL'],
            file_level="DEBUG",
            enable_colors=self._config['LOG_COLORS'],
        )

    def get_transfer_config(self) -> TransferConfig:
        """Get transfer engine configuration."""
        return TransferConfig(
            chunk_size=self._config['COPY_CHUNK_SIZE'],
            progress_interval_ms=self._config['PROGRESS_INTERVAL_MS'],
            workers=self._config['WORKERS'],
        )

    def get_remote_config(self) -> RemoteConfig:
        """Get remote backend configuration."""
        return RemoteConfig(
            connect_timeout=self._config['CONNECT_TIMEOUT'],
            ftp_keepalive_seconds=self._config['FTP_KEEPALIVE_SECONDS'],
            ftp_passive=self._config['FTP_PASSIVE'],
        )

    def get_settings(self) -> AppSettings:
        """Get all settings bundled together."""
        return AppSettings(
            logging=self.get_logging_config(),
            transfer=self.get_transfer_config(),
            remote=self.get_remote_config(),
        )

    def get_server_configs(self) -> List[ServerConfig]:
        """Get every configured server, in the order they were listed."""
        return list(self._servers.values())

    def get_server_config(self, name: str) -> ServerConfig:
        """Get one configured server by its logical name."""
        try:
            return self._servers[name]
        except KeyError:
            raise ConfigurationError(f"Unknown server: {name}")

    def get_config_value(self, key: str, default: Any = None) -> Any:
        """Get a specific configuration value."""
        return self._config.get(key, default)
