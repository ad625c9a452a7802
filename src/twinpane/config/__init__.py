# Configuration module

from .models import (
    ServerConfig,
    AppSettings,
    LoggingConfig,
    TransferConfig,
    RemoteConfig,
)
from .settings import ConfigManager, ConfigurationError

__all__ = [
    'ServerConfig',
    'AppSettings',
    'LoggingConfig',
    'TransferConfig',
    'RemoteConfig',
    'ConfigManager',
    'ConfigurationError',
]
