"""Connectivity check entry point: connect to every configured server and list its root."""

import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional

from .config.settings import ConfigManager, ConfigurationError
from .controller.main_controller import FileManagerController
from .utils.error_handler import get_error_handler, ErrorCategory, ErrorSeverity, handle_error
from .utils.logging_config import setup_logging as setup_advanced_logging
from .vfs.errors import VFSError


# Global variables for graceful shutdown
controller: Optional[FileManagerController] = None
logger: Optional[logging.Logger] = None

CHECK_HOLDER = "check"


def setup_logging(config_manager: ConfigManager):
    """Set up logging and the error handler from configuration."""
    logging_config = config_manager.get_logging_config()
    log_dir = Path(logging_config.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    logging_manager = setup_advanced_logging(
        log_dir=str(log_dir),
        console_level=logging_config.console_level,
        file_level=logging_config.file_level,
        enable_colors=logging_config.enable_colors
    )

    get_error_handler(str(log_dir / "error_context"))

    log = logging.getLogger(__name__)
    log.info(f"Python version: {sys.version}")
    log.info(f"Platform: {sys.platform}")
    log.info(f"Working directory: {os.getcwd()}")
    log.info(f"Log directory: {log_dir}")

    return logging_manager


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully."""
    if logger:
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")

    if controller:
        controller.shutdown()

    if logger:
        logger.info("Graceful shutdown complete")

    sys.exit(0)


def check_server(config) -> bool:
    """Connect to one server, list its root and release it."""
    timeout = controller.settings.remote.connect_timeout * 2

    try:
        session = controller.connect(CHECK_HOLDER, config).result(timeout=timeout)
        entries = session.read_dir("/")
    except VFSError as e:
        logger.error(f"{config.name}: {e}")
        print(f"  {config.name:<20} {config.protocol:<5} FAILED  {e}")
        return False
    finally:
        controller.release(CHECK_HOLDER).result(timeout=timeout)
        controller.dispatcher.process_pending()

    directories = sum(1 for entry in entries if entry.is_dir)
    logger.info(f"{config.name}: {len(entries)} entries in /")
    print(f"  {config.name:<20} {config.protocol:<5} OK      "
          f"{len(entries)} entries ({directories} directories) in /")
    return True


def main() -> int:
    """Main application entry point."""
    global controller, logger

    try:
        logger = logging.getLogger(__name__)

        print("Loading twinpane configuration...")
        config_manager = ConfigManager()

        setup_logging(config_manager)
        logger = logging.getLogger(__name__)

        logger.info("=" * 60)
        logger.info("twinpane connectivity check starting up")
        logger.info("=" * 60)

        controller = FileManagerController(config_manager.get_settings())

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        servers = config_manager.get_server_configs()
        if not servers:
            print("No servers configured (set TWINPANE_SERVERS)")
            logger.warning("No servers configured")
            return 0

        print(f"Checking {len(servers)} server(s):")
        failures = 0
        for server in servers:
            if not check_server(server):
                failures += 1

        print(f"{len(servers) - failures}/{len(servers)} server(s) reachable")
        return 1 if failures else 0

    except ConfigurationError as e:
        error_msg = f"Configuration error: {e}"
        if logger and logging.getLogger().handlers:
            logger.critical(error_msg)
            handle_error(
                error=e,
                category=ErrorCategory.CONFIGURATION,
                severity=ErrorSeverity.CRITICAL,
                component="main",
                operation="startup"
            )
        print(error_msg)
        return 1
    except KeyboardInterrupt:
        if logger:
            logger.info("Received keyboard interrupt, initiating graceful shutdown...")
        return 130
    except Exception as e:
        error_msg = f"Unexpected error during execution: {e}"
        if logger:
            logger.critical(error_msg, exc_info=True)
            handle_error(
                error=e,
                category=ErrorCategory.UNKNOWN,
                severity=ErrorSeverity.CRITICAL,
                component="main",
                operation="execution"
            )
        print(error_msg)
        return 1
    finally:
        if controller:
            controller.shutdown()


if __name__ == "__main__":
    sys.exit(main())
