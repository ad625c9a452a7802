# Utilities module

from .error_handler import ErrorCategory, ErrorSeverity, get_error_handler, handle_error
from .logging_config import LoggingManager, get_logging_manager, setup_logging

__all__ = [
    'ErrorCategory',
    'ErrorSeverity',
    'get_error_handler',
    'handle_error',
    'LoggingManager',
    'get_logging_manager',
    'setup_logging',
]
