"""
Logging Configuration Module.

This module provides centralized logging configuration for the server,
including a rotating file handler and console output. uvicorn's loggers
are left unconfigured so their records propagate to the root logger set
up here.
"""

import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Optional

# Configuration
LOG_DIR = "logs"
LOG_FILENAME = "treeserve.log"
MAX_BYTES = 5 * 1024 * 1024  # 5 MB
BACKUP_COUNT = 5
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class SafeRotatingFileHandler(RotatingFileHandler):
    """
    A RotatingFileHandler that handles Windows file locking errors gracefully.

    On Windows, log rotation can fail with PermissionError if the file is still
    in use by another process or handler. This handler catches those errors
    and continues logging without crashing.
    """

    def doRollover(self) -> None:
        """
        Perform log file rotation, catching Windows file locking errors.
        """
        try:
            super().doRollover()
        except PermissionError:
            if sys.platform != "win32":
                raise
            # On Windows, skip rotation - will retry next opportunity


def setup_logging(
    debug_mode: bool = False,
    log_to_console: bool = True,
    log_dir: Optional[str] = LOG_DIR,
) -> None:
    """
    Configures the root logger with a rotating file handler
    and optional console handler.

    This function should be called once at process startup.

    Args:
        debug_mode (bool): If True, sets level to DEBUG. Defaults to False (INFO).
        log_to_console (bool): If True, adds a StreamHandler. Defaults to True.
        log_dir (Optional[str]): Directory for the log file. None disables
            file logging.
    """
    log_path: Optional[str] = None
    if log_dir is not None:
        try:
            os.makedirs(log_dir, exist_ok=True)
        except OSError as e:
            # Fallback to current directory if we can't create the log dir
            print(f"Failed to create log directory: {e}. Logging to current directory.")
            log_path = LOG_FILENAME
        else:
            log_path = os.path.join(log_dir, LOG_FILENAME)

    root_logger = logging.getLogger()

    # Remove existing handlers to avoid duplicates if called multiple times
    if root_logger.handlers:
        root_logger.handlers.clear()

    level = logging.DEBUG if debug_mode else logging.INFO
    root_logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    if log_path is not None:
        try:
            file_handler = SafeRotatingFileHandler(
                log_path,
                maxBytes=MAX_BYTES,
                backupCount=BACKUP_COUNT,
                encoding="utf-8",
                delay=False,
            )
            file_handler.setFormatter(formatter)
            file_handler.setLevel(level)
            root_logger.addHandler(file_handler)
        except OSError as e:
            print(f"CRITICAL: Could not set up file logging: {e}")

    if log_to_console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.setLevel(level)
        root_logger.addHandler(console_handler)

    root_logger.info("=" * 60)
    root_logger.info(f"treeserve session started at {datetime.now().isoformat()}")
    root_logger.info("=" * 60)

    # Access logs are noisy for a static server; keep them at debug only
    if not debug_mode:
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Convenience function to get a logger with the given name.

    Args:
        name (str): The name of the logger (usually __name__).

    Returns:
        logging.Logger: The logger instance.
    """
    return logging.getLogger(name)


def shutdown_logging() -> None:
    """
    Explicitly closes all logging handlers to release file locks.
    """
    logging.shutdown()
