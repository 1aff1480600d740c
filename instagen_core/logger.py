"""
Logging setup for InstaGen Core.

Provides a single package logger with console output. Background warming
tasks log through this logger so failures stay visible even though they
never propagate to the caller.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO

LOGGER_NAME = "instagen_core"
LOG_FORMAT = "[%(asctime)s] %(levelname)s:%(name)s: %(message)s"

# Global logger instance
logger: Optional[logging.Logger] = None


def resolve_log_level(level: str | int | None, default: int = logging.INFO) -> int:
    """Map a level name such as ``"debug"`` to its numeric value."""
    if level is None:
        return default
    if isinstance(level, int):
        return level
    return getattr(logging, level.strip().upper(), default)


def setup_logger(
    level: int | str = logging.INFO,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Set up the package logger with a console handler.

    Args:
        level: Logging level or level name (default: INFO)
        stream: Output stream (default: stdout)

    Returns:
        Configured logger instance
    """
    global logger

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(resolve_log_level(level))

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    console_handler = logging.StreamHandler(stream or sys.stdout)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(console_handler)

    # Third-party clients are chatty at INFO
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    logger.propagate = False

    return logger


def get_logger() -> logging.Logger:
    """
    Get the global logger instance.

    Returns:
        Logger instance or creates a basic one if not initialized
    """
    global logger
    if logger is None:
        logger = logging.getLogger(LOGGER_NAME)
        logger.setLevel(logging.INFO)

        # Only add console handler if none exist
        if not logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            logger.addHandler(handler)
            logger.propagate = False

    return logger


logger = get_logger()
