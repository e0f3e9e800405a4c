"""Structured logging setup."""

import logging
import sys
from typing import Callable

import structlog

from helmsman.config import get_config

_log_sink: Callable[[str], None] | None = None


class _LineSink:
    """File-like object that hands complete log lines to a callback."""

    def __init__(self, sink: Callable[[str], None]):
        self._sink = sink
        self._pending = ""

    def write(self, text: str) -> int:
        self._pending += text
        while "\n" in self._pending:
            line, self._pending = self._pending.split("\n", 1)
            if line:
                self._sink(line)
        return len(text)

    def flush(self) -> None:
        if self._pending:
            self._sink(self._pending)
            self._pending = ""


def set_system_log_sink(sink: Callable[[str], None] | None) -> None:
    """Route log lines to ``sink`` instead of stderr (None restores stderr)."""
    global _log_sink
    _log_sink = sink


def configure_logging(level: str | None = None) -> None:
    """Configure structlog from ``config.logging``.

    Args:
        level: Optional level overriding the configured one (e.g. ``--verbose``).
    """
    settings = get_config().logging
    level_name = (level or settings.level).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if settings.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(
            file=_LineSink(_log_sink) if _log_sink else sys.stderr
        ),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a logger, usually ``get_logger(__name__)``."""
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()


log = get_logger(__name__)
