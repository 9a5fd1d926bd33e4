"""Logging for threadline.

Every module logs through a child of the ``threadline`` logger named after
its area (``timeline``, ``approval.policy``, ``conversation``, ...). Code
that works on one conversation thread uses get_thread_logger() so each
record carries the thread id.

Nothing is emitted until the host application calls setup_logging(). That
attaches one handler: a file from config or ``THREADLINE_LOG``, otherwise
stderr when it is a terminal. Records look like::

    12:00:01 debug [timeline] Folded tl_main: 1 new of 9 events

Verbosity 0-4 maps to error, warning, info, verbose, trace.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import MutableMapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from threadline.config.schema import LoggingConfig

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

ROOT_LOGGER = "threadline"
LOG_FILE_ENV = "THREADLINE_LOG"

logger = logging.getLogger(ROOT_LOGGER)

_VERBOSITY = (logging.ERROR, logging.WARNING, logging.INFO, VERBOSE, TRACE)

_configured = False
_handler: logging.Handler | None = None


class _AreaFormatter(logging.Formatter):
    """Adds ``level`` (lowercase) and ``area`` (logger name below threadline)."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(level)s [%(area)s] %(message)s", datefmt="%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        record.level = record.levelname.lower()
        record.area = record.name.removeprefix(ROOT_LOGGER + ".")
        return super().format(record)


class ThreadLogAdapter(logging.LoggerAdapter):
    """Prefixes messages with the conversation thread they concern."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        return f"{self.extra['thread_id']}: {msg}", kwargs


def resolve_level(config: LoggingConfig | None) -> int:
    """Effective level for a logging config; ``verbose`` beats ``level``."""
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        return _VERBOSITY[max(0, min(config.verbose, len(_VERBOSITY) - 1))]
    if config.level:
        level = logging.getLevelName(config.level.upper())
        if isinstance(level, int):
            return level
    return logging.INFO


def _open_handler(log_path: str | None) -> logging.Handler | None:
    if log_path:
        try:
            return logging.FileHandler(os.path.expanduser(log_path), mode="a", encoding="utf-8")
        except OSError as e:
            if not sys.stderr.isatty():
                return None
            print(f"[threadline] Failed to open log file: {e}", file=sys.stderr)
    # Only a real console; pipes belong to the host
    if sys.stderr.isatty():
        return logging.StreamHandler(sys.stderr)
    return None


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Attach threadline's handler once; later calls are no-ops until shutdown_logging()."""
    global _configured, _handler
    if _configured:
        return
    _configured = True

    level = resolve_level(config)
    logger.setLevel(level)

    log_path = config.file if config and config.file else os.environ.get(LOG_FILE_ENV)
    handler = _open_handler(log_path)
    if handler is None:
        return
    handler.setLevel(level)
    handler.setFormatter(_AreaFormatter())
    logger.addHandler(handler)
    _handler = handler


def shutdown_logging() -> None:
    """Detach and close the handler added by setup_logging()."""
    global _configured, _handler
    _configured = False
    if _handler is not None:
        logger.removeHandler(_handler)
        _handler.close()
        _handler = None
    logger.setLevel(logging.NOTSET)


def get_logger(name: str | None = None) -> logging.Logger:
    """Return the ``threadline`` logger, or its child for an area like "timeline"."""
    if name:
        return logger.getChild(name)
    return logger


def get_thread_logger(name: str, thread_id: str) -> ThreadLogAdapter:
    """Area logger whose messages start with ``thread_id``."""
    return ThreadLogAdapter(get_logger(name), {"thread_id": thread_id})
