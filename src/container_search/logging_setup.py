"""Loguru sink configuration for hosts embedding the container search backend."""

import sys
from typing import Any, TextIO

from loguru import logger

DEFAULT_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan> - <level>{message}</level>"
)


def configure_logging(
    level: str = "INFO", sink: TextIO | Any = None, fmt: str = DEFAULT_FORMAT
) -> int:
    """Replace all loguru sinks with a single sink at the given level.

    Args:
        level: Minimum level to emit
        sink: Destination (defaults to stderr)
        fmt: Loguru format string

    Returns:
        Handler id of the new sink
    """
    logger.remove()
    return logger.add(sink or sys.stderr, level=level, format=fmt)
