"""
Logging configuration for lamekit.

Library modules only create `logging.getLogger(__name__)` loggers. Applications
call configure_logging() once to attach handlers to the "lamekit" logger.
"""

import logging
import logging.handlers
import os
import sys
from typing import Optional

from lamekit.config import LameConfig

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'

ROOT_LOGGER_NAME = "lamekit"


def _make_file_handler(path: str) -> logging.Handler:
    # WatchedFileHandler reopens the file after external rotation
    handler = logging.handlers.WatchedFileHandler(path, mode='a')
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    original_emit = handler.emit

    def safe_emit(record):
        try:
            original_emit(record)
        except (IOError, OSError):
            pass

    handler.emit = safe_emit
    return handler


def configure_logging(config: Optional[LameConfig] = None) -> logging.Logger:
    """
    Attach console and (optionally) file handlers to the lamekit logger.

    Safe to call more than once: handlers already attached for the same
    target are not duplicated.

    Args:
        config: Configuration providing log_level and log_file (default: LameConfig())

    Returns:
        The configured "lamekit" logger
    """
    config = config or LameConfig()
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(config.log_level.upper())

    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in logger.handlers
    )
    if not has_console:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(console)

    if config.log_file:
        already_attached = any(
            isinstance(h, logging.handlers.WatchedFileHandler)
            and getattr(h, 'baseFilename', None) == os.path.abspath(config.log_file)
            for h in logger.handlers
        )
        if not already_attached:
            try:
                logger.addHandler(_make_file_handler(config.log_file))
            except OSError as e:
                logger.warning(f"Cannot open log file {config.log_file}: {e}")

    logger.propagate = False
    return logger
