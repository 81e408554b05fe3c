"""
Structured error types for pipepool.

Every failure the dispatcher can observe falls into one of three families:

- **Startup failures:** a channel could not be opened or a worker could not
  be spawned. Fatal to the whole run.
- **Transport failures:** a read or write on one worker's channel failed or
  moved fewer bytes than a record. Fatal to a worker process, local to the
  manager (logged, the run continues).
- **Protocol violations:** a partial or malformed record. Handled exactly
  like a transport failure.

Configuration and job-source problems get their own types so the CLI can map
them to exit codes.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────┐
        │                      PoolError                        │
        │            (category, context, cause)                 │
        ├──────────────────────────────────────────────────────┤
        │  StartupFailure     TransportFailure     ConfigError │
        │  (STARTUP)          (TRANSPORT)          (CONFIG)    │
        │                          │                            │
        │                    ProtocolViolation                  │
        │                    (PROTOCOL)                         │
        │                                                       │
        │  JobValidationError (VALIDATION, also a ValueError)   │
        └──────────────────────────────────────────────────────┘

Examples:
    >>> err = TransportFailure("short read").with_context(worker_index=2, pid=4711)
    >>> err.to_dict()["context"]
    {'worker_index': 2, 'pid': 4711}
    >>> categorize_error(BrokenPipeError())
    <ErrorCategory.TRANSPORT: 'TRANSPORT'>

Tags:
    errors, error-hierarchy, pipepool, transport, startup
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories used for logging and exit-code routing."""

    STARTUP = "STARTUP"        # Channel creation, process spawn
    TRANSPORT = "TRANSPORT"    # Broken pipe, EOF, short read/write
    PROTOCOL = "PROTOCOL"      # Partial or malformed record
    CONFIG = "CONFIG"          # Invalid pool configuration or settings
    VALIDATION = "VALIDATION"  # Invalid job descriptors
    INTERNAL = "INTERNAL"      # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to a :class:`PoolError`.

    Only fields that were set end up in :meth:`to_dict`, so log lines stay
    short. Anything without a dedicated field goes into ``metadata``.

    Attributes:
        job_type: Job type of the worker or job involved
        worker_index: Position of the worker in the pool
        pid: Process id of the worker
        duration: Duration of the job in flight
        metadata: Additional key-value pairs
    """

    job_type: int | None = None
    worker_index: int | None = None
    pid: int | None = None
    duration: int | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["job_type", "worker_index", "pid", "duration"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class PoolError(Exception):
    """
    Base exception for all pipepool errors.

    Carries a category, an :class:`ErrorContext` and an optional chained
    cause. Subclasses pick their category through ``default_category``.

    Examples:
        >>> try:
        ...     raise BrokenPipeError(32, "Broken pipe")
        ... except BrokenPipeError as e:
        ...     error = TransportFailure("send failed", cause=e)
        >>> error.__cause__ is error.cause
        True
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> PoolError:
        """
        Add context to this error (fluent API).

        Usage:
            raise StartupFailure("spawn failed").with_context(job_type=2)
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# STARTUP / TRANSPORT / PROTOCOL
# =============================================================================


class StartupFailure(PoolError):
    """Channel creation or worker spawn failed. Aborts the run."""

    default_category = ErrorCategory.STARTUP


class TransportFailure(PoolError):
    """A channel read or write failed or moved fewer bytes than a record."""

    default_category = ErrorCategory.TRANSPORT


class ProtocolViolation(TransportFailure):
    """A partial or malformed record was seen on a channel."""

    default_category = ErrorCategory.PROTOCOL


# =============================================================================
# CONFIG / VALIDATION
# =============================================================================


class ConfigError(PoolError):
    """Invalid pool configuration or settings."""

    default_category = ErrorCategory.CONFIG


class JobValidationError(PoolError, ValueError):
    """A job descriptor or a line of a job stream is invalid."""

    default_category = ErrorCategory.VALIDATION

    def __init__(self, message: str, *, line: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.line = line
        if line is not None:
            self.context.metadata["line"] = line


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, PoolError):
        return error.category
    if isinstance(error, (BrokenPipeError, ConnectionError, EOFError)):
        return ErrorCategory.TRANSPORT
    if isinstance(error, OSError):
        return ErrorCategory.TRANSPORT
    if isinstance(error, ValueError):
        return ErrorCategory.VALIDATION
    return ErrorCategory.INTERNAL


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "PoolError",
    "StartupFailure",
    "TransportFailure",
    "ProtocolViolation",
    "ConfigError",
    "JobValidationError",
    "categorize_error",
]
