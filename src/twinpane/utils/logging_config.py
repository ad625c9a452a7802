"""Logging configuration for the twinpane file manager core."""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional


DETAILED_FORMAT = ('[%(asctime)s] [%(levelname)-8s] [%(name)s:%(lineno)d] '
                   '[PID:%(process)d] [%(threadName)s] - %(message)s')
CONSOLE_FORMAT = '[%(asctime)s] [%(levelname)-8s] - %(message)s'

QUIET_LOGGERS = {
    'paramiko': logging.WARNING,
    'paramiko.transport': logging.ERROR,
    'schedule': logging.WARNING,
}


class ColoredFormatter(logging.Formatter):
    """Colors the level name on terminals."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def format(self, record):
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class LoggingManager:
    """Installs the console, main, error and performance log handlers."""

    def __init__(self, log_dir: str, app_name: str = "twinpane"):
        self.log_dir = Path(log_dir)
        self.app_name = app_name
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.performance_logger: Optional[logging.Logger] = None

    def setup_logging(self, console_level: str = "INFO", file_level: str = "DEBUG",
                      enable_colors: bool = True, max_file_size: int = 10 * 1024 * 1024,
                      backup_count: int = 5) -> None:
        """Replace the root logger's handlers.

        The main log rotates at midnight; the error and performance logs
        rotate by size. A log file that cannot be opened is reported on
        stderr and skipped.

        Args:
            console_level: Logging level for stderr
            file_level: Logging level for the main log file
            enable_colors: Color the console when stderr is a terminal
            max_file_size: Size at which the error and performance logs rotate
            backup_count: Rotated files to keep
        """
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        root_logger.setLevel(logging.DEBUG)

        # stderr, stdout may belong to the UI
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(getattr(logging, console_level.upper()))
        formatter_class = ColoredFormatter if enable_colors and sys.stderr.isatty() else logging.Formatter
        console_handler.setFormatter(formatter_class(CONSOLE_FORMAT, datefmt='%H:%M:%S'))
        root_logger.addHandler(console_handler)

        detailed = logging.Formatter(DETAILED_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')
        self._add_file_handler(
            root_logger, "main",
            lambda path: logging.handlers.TimedRotatingFileHandler(
                path, when='midnight', backupCount=30, encoding='utf-8'),
            getattr(logging, file_level.upper()), detailed
        )
        self._add_file_handler(
            root_logger, "errors",
            lambda path: logging.handlers.RotatingFileHandler(
                path, maxBytes=max_file_size, backupCount=backup_count, encoding='utf-8'),
            logging.ERROR, detailed
        )

        performance_logger = logging.getLogger('performance')
        performance_logger.setLevel(logging.INFO)
        performance_logger.propagate = False
        for handler in performance_logger.handlers[:]:
            performance_logger.removeHandler(handler)
        if self._add_file_handler(
            performance_logger, "performance",
            lambda path: logging.handlers.RotatingFileHandler(
                path, maxBytes=max_file_size, backupCount=backup_count, encoding='utf-8'),
            logging.INFO,
            logging.Formatter('[%(asctime)s] [PERF] - %(message)s', datefmt='%Y-%m-%d %H:%M:%S')
        ):
            self.performance_logger = performance_logger

        for logger_name, level in QUIET_LOGGERS.items():
            logging.getLogger(logger_name).setLevel(level)

        logger = logging.getLogger(__name__)
        logger.info(f"Logging system initialized - Console: {console_level}, File: {file_level}")
        logger.info(f"Log directory: {self.log_dir}")

    def _add_file_handler(self, target: logging.Logger, kind: str, make_handler,
                          level: int, formatter: logging.Formatter) -> bool:
        name = self.app_name if kind == "main" else f"{self.app_name}_{kind}"
        try:
            handler = make_handler(self.log_dir / f"{name}.log")
        except OSError as e:
            print(f"Warning: Could not set up {kind} log file: {e}", file=sys.stderr)
            return False
        handler.setLevel(level)
        handler.setFormatter(formatter)
        target.addHandler(handler)
        return True

    def log_performance(self, operation: str, duration: float,
                        additional_data: Optional[dict] = None):
        """Record how long ``operation`` took, in seconds."""
        if self.performance_logger is None:
            return
        data_str = ""
        if additional_data:
            data_str = " | " + ", ".join(f"{k}={v}" for k, v in additional_data.items())
        self.performance_logger.info(f"{operation}: {duration:.3f}s{data_str}")


_logging_manager: Optional[LoggingManager] = None


def get_logging_manager(log_dir: Optional[str] = None,
                        app_name: str = "twinpane") -> Optional[LoggingManager]:
    """The process-wide manager; created on the first call that passes ``log_dir``."""
    global _logging_manager

    if _logging_manager is None and log_dir is not None:
        _logging_manager = LoggingManager(log_dir, app_name)

    return _logging_manager


def setup_logging(log_dir: str, console_level: str = "INFO", file_level: str = "DEBUG",
                  enable_colors: bool = True) -> LoggingManager:
    """Create the process-wide manager if needed and install its handlers."""
    manager = get_logging_manager(log_dir)
    manager.setup_logging(console_level=console_level, file_level=file_level,
                          enable_colors=enable_colors)
    return manager
