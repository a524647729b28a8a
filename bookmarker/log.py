"""Logging setup for the bookmarker core.

Modules log through ``logging.getLogger(__name__)``; applications embedding
the library call :func:`setup_logging` once to route records to stderr.
"""
import logging
import sys
from typing import Optional

from bookmarker.config import get_config

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """Configure the ``bookmarker`` logger hierarchy.

    Args:
        level: Log level name (defaults to config ``log_level``)

    Returns:
        The configured package logger
    """
    if level is None:
        level = get_config().log_level

    logger = logging.getLogger("bookmarker")
    logger.setLevel(getattr(logging, level.upper()))

    # Avoid stacking handlers on repeated setup
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)

    return logger
