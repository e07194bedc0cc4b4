"""Logging configuration for the Ralph loop.

Installs a single coloured console handler. Modules log through
``logging.getLogger(__name__)``; operator-facing progress output goes
through a rich console instead.
"""

import logging
import sys

_CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

_LOG_COLORS = {
    "DEBUG": "\033[94m",  # Blue
    "INFO": "\033[92m",  # Green
    "WARNING": "\033[93m",  # Yellow
    "ERROR": "\033[91m",  # Red
    "CRITICAL": "\033[91m\033[1m",  # Bold Red
    "RESET": "\033[0m",
}


class ColorFormatter(logging.Formatter):
    """Formatter that adds colors to log levels for console output."""

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if levelname in _LOG_COLORS:
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = f"{_LOG_COLORS[levelname]}{levelname}{_LOG_COLORS['RESET']}"
        return super().format(record)


def configure_logging(level: str | int = logging.INFO, color: bool = True) -> None:
    """Configure the ralph_loop logger with one console handler.

    Safe to call repeatedly; previous handlers installed here are replaced.

    Args:
        level: Level name ("DEBUG", "INFO", ...) or logging constant
        color: Whether to colour level names
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    package_logger = logging.getLogger("ralph_loop")
    package_logger.setLevel(level)
    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    formatter = ColorFormatter(_CONSOLE_FORMAT) if color else logging.Formatter(_CONSOLE_FORMAT)
    handler.setFormatter(formatter)
    package_logger.addHandler(handler)
