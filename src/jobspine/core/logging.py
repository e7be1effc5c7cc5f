"""
Structured logging for jobspine.

Every component logs event-style through structlog so that job and workflow
identifiers travel as fields instead of being baked into message strings.

Architecture:
    ::

        ┌────────────────────────────────────────────────────────────┐
        │ configure_logging(level="INFO", json_format=True,          │
        │                   service="jobspine")                      │
        │                                                             │
        │     ↓                                                       │
        │ structlog processor chain:                                  │
        │   1. merge_contextvars   (job_id / execution_id)           │
        │   2. TimeStamper(iso)                                       │
        │   3. add_log_level / add_logger_name                        │
        │   4. add_service_metadata                                   │
        │   5. JSONRenderer (or ConsoleRenderer for a tty)            │
        └────────────────────────────────────────────────────────────┘

        logger = get_logger(__name__)
        logger.info("job.completed", job_id="...", duration_ms=12.5)

Examples:
    >>> from jobspine.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> logger = get_logger(__name__)
    >>> with LogContext(job_id="abc"):
    ...     logger.info("job.started")
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from jobspine.core.errors import ConfigError

if TYPE_CHECKING:
    from jobspine.core.settings import SchedulerSettings

_SERVICE_NAME = "jobspine"


def _resolve_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    if not isinstance(resolved, int):
        raise ConfigError(f"Unknown log level: {level!r}", context={"level": level})
    return resolved


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service", _SERVICE_NAME)
    return event_dict


def configure_logging(
    level: str | int = "INFO",
    json_format: bool | None = None,
    service: str = "jobspine",
    add_timestamp: bool = True,
) -> None:
    """Configure structured logging for the process.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name attached to every event
        add_timestamp: Include ISO timestamp in logs

    Raises:
        ConfigError: If *level* is not a known logging level name.
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service
    numeric_level = _resolve_level(level)

    if json_format is None:
        json_format = not sys.stdout.isatty()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if add_timestamp:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if json_format:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Stdlib loggers (thread backend, worker pool) share the same level
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
    )


def configure_from_settings(settings: SchedulerSettings) -> None:
    """Apply ``log_level`` and ``json_logs`` from *settings*."""
    configure_logging(level=settings.log_level, json_format=settings.json_logs)


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs on this thread."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Context manager for scoped logging context.

    Example:
        with LogContext(job_id=job.id, job_type=job.job_type):
            logger.info("job.started")
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args) -> None:
        unbind_context(*self._context.keys())


__all__ = [
    "configure_logging",
    "configure_from_settings",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
