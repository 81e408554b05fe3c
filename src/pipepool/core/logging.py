"""
pipepool logging - structured logging for the manager and its workers.

Both roles log through structlog with the same processor chain. The only
difference is the output stream: the manager writes to stdout, a worker
writes to stderr because its stdout is the response channel.

Architecture:
    ::

        configure_logging(level="INFO", json_format=None,
                          service="pipepool", stream=sys.stdout)
            ↓
        processor chain:
          1. TimeStamper (iso)
          2. merge_contextvars      (job_type, pid bound by workers)
          3. add_log_level          (logger_name bound by get_logger)
          4. add_service_metadata
          5. elasticsearch_compatible   (JSON mode only)
          6. JSONRenderer or ConsoleRenderer

Examples:
    >>> from pipepool.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> logger = get_logger(__name__)
    >>> logger.info("job.dispatched", job_type=2, duration=5)

Guardrails:
    - Auto-detects JSON vs console based on TTY
    - Loggers are not cached on first use: the stream may be swapped between
      CLI invocations in the same process
    - Event names are dotted (``worker.spawned``, ``job.completed``)

Tags:
    logging, structlog, observability, pipepool
"""

from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_SERVICE_NAME = "pipepool"


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _elasticsearch_compatible(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Make field names Elasticsearch/ECS compatible."""
    if "timestamp" in event_dict:
        event_dict["@timestamp"] = event_dict.pop("timestamp")

    if "level" in event_dict:
        event_dict["log.level"] = event_dict.pop("level")

    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "pipepool",
    stream: TextIO | None = None,
    add_timestamp: bool = True,
) -> None:
    """Configure structured logging for one process.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
        stream: Output stream, defaults to stdout
        add_timestamp: Include ISO timestamp in logs

    Example:
        # Worker process: never touch stdout
        configure_logging(level="INFO", service="pipepool.worker", stream=sys.stderr)
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    out = stream if stream is not None else sys.stdout
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    if json_format is None:
        json_format = not out.isatty()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if add_timestamp:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if json_format:
        shared_processors.append(_elasticsearch_compatible)
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=out.isatty())

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=out),
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=out,
        level=numeric_level,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger.

    Args:
        name: Logger name (usually __name__), added to every event as
            ``logger_name``. Bound as an initial value of the lazy proxy, so
            the configuration is still resolved on each call.
    """
    if name:
        return structlog.get_logger(logger_name=name)
    return structlog.get_logger()


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs.

    Example:
        bind_context(job_type=2, pid=os.getpid())
        logger.info("worker.started")  # Includes job_type and pid
    """
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
        with LogContext(job_type=2):
            logger.info("worker.started")
        # Context cleared here
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        unbind_context(*self._context.keys())


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
