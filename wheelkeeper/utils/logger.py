"""
Logging utilities for wheelkeeper.

wheelkeeper is a library first: every module logs through a logger in the
``wheelkeeper`` namespace, which stays silent (``NullHandler``) until the
embedding application calls :func:`setup_logging`. The log level can also
be taken from the ``WHEELKEEPER_LOG_LEVEL`` environment variable.
"""

from __future__ import annotations

import os
import sys
import logging
import threading
from typing import IO, Optional

from wheelkeeper.constants import (
    LOG_DATE_FORMAT,
    LOG_DEFAULT_FORMAT,
    LOG_VERBOSE_FORMAT,
)

#: Root of the wheelkeeper logger hierarchy.
LOGGER_NAMESPACE = "wheelkeeper"

#: Environment variable consulted when no explicit level is given.
LOG_LEVEL_ENV = "WHEELKEEPER_LOG_LEVEL"

_logging_configured: bool = False
_lock = threading.Lock()


class ColoredFormatter(logging.Formatter):
    """Logging formatter with optional ANSI color support."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(
        self,
        fmt: str,
        *,
        datefmt: Optional[str] = None,
        use_color: bool = True,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if self.use_color and self._should_use_color():
            color = self.COLORS.get(levelname)
            if color:
                record.levelname = f"{color}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            # Other handlers may format the same record
            record.levelname = levelname

    @staticmethod
    def _should_use_color() -> bool:
        """Determine whether ANSI colors should be emitted."""
        if os.environ.get("NO_COLOR"):
            return False
        if os.environ.get("CI"):
            return False
        try:
            return sys.stderr.isatty()
        except (AttributeError, OSError):
            return False


def _level_from_env(default: int) -> int:
    """Resolve the log level named in :data:`LOG_LEVEL_ENV`, if any."""
    raw = os.environ.get(LOG_LEVEL_ENV)
    if not raw:
        return default
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw.strip().upper())
    return level if isinstance(level, int) else default


def setup_logging(
    *,
    level: Optional[int] = None,
    verbose: bool = False,
    stream: Optional[IO[str]] = None,
) -> None:
    """Configure logging for wheelkeeper.

    This function is safe to call multiple times; configuration is
    protected by a process-wide lock.

    Args:
        level: Logging level (e.g., ``logging.INFO``). When ``None``, the
            level is read from ``WHEELKEEPER_LOG_LEVEL`` and defaults to
            ``logging.INFO``.
        verbose: Enable verbose formatting with timestamps.
        stream: Output stream; defaults to ``sys.stderr``.
    """
    global _logging_configured

    if level is None:
        level = _level_from_env(logging.INFO)

    with _lock:
        root_logger = logging.getLogger(LOGGER_NAMESPACE)
        root_logger.handlers.clear()
        root_logger.setLevel(level)

        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setLevel(level)

        fmt = LOG_VERBOSE_FORMAT if verbose else LOG_DEFAULT_FORMAT
        formatter = ColoredFormatter(
            fmt,
            datefmt=LOG_DATE_FORMAT,
            use_color=not os.environ.get("NO_COLOR"),
        )
        handler.setFormatter(formatter)

        root_logger.addHandler(handler)
        root_logger.propagate = False
        _logging_configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger within the wheelkeeper namespace.

    Args:
        name: Logger name, e.g. ``"parser"`` or ``__name__``.

    Returns:
        A logger instance under the ``wheelkeeper`` hierarchy.
    """
    if not name or name == LOGGER_NAMESPACE:
        logger = logging.getLogger(LOGGER_NAMESPACE)
    elif name.startswith(f"{LOGGER_NAMESPACE}."):
        logger = logging.getLogger(name)
    else:
        logger = logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")

    # Ensure library-safe behavior if logging is not configured
    if not logger.handlers and (not logger.parent or not logger.parent.handlers):
        logger.addHandler(logging.NullHandler())

    return logger


def is_logging_configured() -> bool:
    """Return True if wheelkeeper logging has been configured."""
    return _logging_configured


def disable_logging() -> None:
    """Disable all wheelkeeper logging output."""
    global _logging_configured

    with _lock:
        root_logger = logging.getLogger(LOGGER_NAMESPACE)
        root_logger.handlers.clear()
        root_logger.addHandler(logging.NullHandler())
        root_logger.setLevel(logging.NOTSET)
        _logging_configured = False
