from __future__ import annotations

import logging
import sys

"""Logging initialization with labeled prefixes.

Console output is one line per record, ``LABEL message``, with the labels
INFO|WARN|ERROR|SUMMARY. SUMMARY is a custom level between INFO and WARNING
used for the final per-run count line.

The application logger ``collar_import`` carries the CLI's own output. Library
modules log through ``logging.getLogger(__name__)`` under the ``src`` package
logger, which gets the same handler so their warnings (and, with --debug,
their debug output) land in the same stream.
"""

__all__ = [
    "APP_LOGGER_NAME",
    "SUMMARY_LEVEL",
    "get_logger",
    "log_summary",
    "reset_logging",
    "setup_logging",
]

APP_LOGGER_NAME = "collar_import"
PACKAGE_LOGGER_NAME = "src"

# Custom SUMMARY level (between INFO=20 and WARNING=30)
SUMMARY_LEVEL = 25

_logger: logging.Logger | None = None


class LabeledFormatter(logging.Formatter):
    """Formatter that prefixes each message with its level label."""

    LEVEL_LABELS = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        logging.WARNING: "WARN",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "CRITICAL",
        SUMMARY_LEVEL: "SUMMARY",
    }

    def format(self, record: logging.LogRecord) -> str:
        level_label = self.LEVEL_LABELS.get(record.levelno, record.levelname)
        return f"{level_label} {record.getMessage()}"


def _configure(logger: logging.Logger, handler: logging.Handler, level: int) -> None:
    logger.setLevel(level)
    for existing in logger.handlers[:]:
        logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.propagate = False


def setup_logging(debug: bool = False) -> logging.Logger:
    """Configure the application and package loggers (idempotent).

    Args:
        debug: lower both loggers to DEBUG

    Returns:
        The application logger
    """
    global _logger

    if _logger is not None:
        return _logger

    logging.addLevelName(SUMMARY_LEVEL, "SUMMARY")

    level = logging.DEBUG if debug else logging.INFO
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(LabeledFormatter())

    logger = logging.getLogger(APP_LOGGER_NAME)
    _configure(logger, handler, level)
    # library modules are chatty at INFO; only surface their warnings unless debugging
    _configure(logging.getLogger(PACKAGE_LOGGER_NAME), handler, logging.DEBUG if debug else logging.WARNING)

    _logger = logger
    return logger


def get_logger() -> logging.Logger:
    """Get the configured application logger, configuring it on first use."""
    if _logger is None:
        return setup_logging()
    return _logger


def log_summary(message: str) -> None:
    get_logger().log(SUMMARY_LEVEL, message)


def reset_logging() -> None:
    """Reset the global logger state. Mainly for testing purposes."""
    global _logger
    _logger = None
