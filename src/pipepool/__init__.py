"""
pipepool - a local job dispatcher for a fixed pool of typed worker processes.

The manager spawns long-lived worker subprocesses, one group per job type,
each wired to it by a pair of pipes. Jobs are routed strictly in order to the
first idle worker of the matching type, completions are detected by
non-blocking polling, and the pool is shut down with a stop sentinel.

Example:
    >>> from pipepool import JobDescriptor, WorkerPool
    >>> with WorkerPool({1: 1, 2: 3}, time_unit=0.1) as pool:  # doctest: +SKIP
    ...     report = pool.run([JobDescriptor(1, 2), JobDescriptor(2, 1)])
"""

__version__ = "0.1.0"

from pipepool.core.errors import (
    ConfigError,
    JobValidationError,
    PoolError,
    ProtocolViolation,
    StartupFailure,
    TransportFailure,
)
from pipepool.execution.jobs import REFERENCE_JOBS, JobQueue, load_jobs, parse_jobs
from pipepool.execution.models import (
    CompletionEvent,
    DispatchEvent,
    JobDescriptor,
    Message,
    MessageKind,
    RunReport,
    WorkerState,
)
from pipepool.execution.pool import WorkerDescriptor, WorkerPool

__all__ = [
    "__version__",
    "PoolError",
    "StartupFailure",
    "TransportFailure",
    "ProtocolViolation",
    "ConfigError",
    "JobValidationError",
    "REFERENCE_JOBS",
    "JobQueue",
    "load_jobs",
    "parse_jobs",
    "CompletionEvent",
    "DispatchEvent",
    "JobDescriptor",
    "Message",
    "MessageKind",
    "RunReport",
    "WorkerState",
    "WorkerDescriptor",
    "WorkerPool",
]
