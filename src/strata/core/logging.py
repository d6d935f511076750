"""
Structured logging for strata.

Every strata module holds a module-level ``logger = get_logger(__name__)``
and emits dotted event names with key/value fields::

    logger.info("migration.applied", migration=identifier, batch=3)
    logger.debug("query.executed", sql=sql, elapsed_ms=1.2)

Nothing is configured on import.  An application (or the ``strata`` CLI)
calls :func:`configure_logging` once; module loggers are lazy proxies and
pick that configuration up on first use.

Architecture:
    ::

        get_logger("strata.core.database")
            │  lazy proxy, logger_name bound as an initial value
            ▼
        processor chain built by configure_logging():
          TimeStamper(iso, utc)        optional
          merge_contextvars            bind_context / LogContext
          add_log_level
          _add_logger_name             logger_name → "logger"
          _add_service_metadata        "service"
          format_exc_info              JSON only
          JSONRenderer | ConsoleRenderer
            │
            ▼
        PrintLogger(stderr)            stdout stays free for --json output

Tags:
    logging, structlog, observability, strata
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_service = "strata"


def _add_logger_name(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    name = event_dict.pop("logger_name", None)
    if name is not None:
        event_dict.setdefault("logger", name)
    return event_dict


def _add_service_metadata(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", _service)
    return event_dict


def _build_processors(json_format: bool, add_timestamp: bool) -> list[Processor]:
    processors: list[Processor] = []
    if add_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    processors += [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        _add_logger_name,
        _add_service_metadata,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]
    if json_format:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    return processors


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "strata",
    add_timestamp: bool = True,
) -> None:
    """Configure structlog for the process.

    Args:
        level: Minimum level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: JSON lines when True, console when False; ``None``
            picks JSON whenever stderr is not a terminal.
        service: Value of the ``service`` key on every event.
        add_timestamp: Prefix events with an ISO-8601 UTC timestamp.
    """
    global _service
    _service = service

    if json_format is None:
        json_format = not sys.stderr.isatty()

    structlog.configure(
        processors=_build_processors(json_format, add_timestamp),
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level.upper())),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> Any:
    """Logger for *name* (usually ``__name__``), rendered as ``logger``."""
    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(name, logger_name=name)


def bind_context(**kwargs: Any) -> None:
    """Add *kwargs* to every event logged from the current context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Bind context for the duration of a ``with`` block.

    Example:
        with LogContext(migration="2024_01_01_000000_create_books"):
            logger.info("schema.statement", sql=sql)
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        unbind_context(*self._context)


__all__ = [
    "LogContext",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "unbind_context",
]
