"""Data model shared by the manager, the workers and the job sources.

Jobs, wire messages and the events the manager emits are plain frozen
dataclasses. Worker descriptors live in :mod:`pipepool.execution.pool`
because they own OS resources.

Duration 0 never appears as a job: on the wire it is the stop sentinel.
In process the two are kept apart by :class:`Message`, which carries an
explicit :class:`MessageKind`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from pipepool.core.errors import JobValidationError

JobType = int

MAX_DURATION = 2**31 - 1


class WorkerState(str, Enum):
    """Availability of a worker."""

    IDLE = "idle"
    BUSY = "busy"


class MessageKind(str, Enum):
    """Kind of a record exchanged over a channel."""

    RUN = "run"      # Request or completion for a job of ``duration`` units
    STOP = "stop"    # Terminate the worker


@dataclass(frozen=True)
class JobDescriptor:
    """A unit of work: which worker type may run it and for how long."""

    job_type: JobType
    duration: int

    def __post_init__(self) -> None:
        if isinstance(self.job_type, bool) or not isinstance(self.job_type, int):
            raise JobValidationError(f"Job type must be an integer, got {self.job_type!r}")
        if isinstance(self.duration, bool) or not isinstance(self.duration, int):
            raise JobValidationError(f"Duration must be an integer, got {self.duration!r}")
        if self.job_type < 1:
            raise JobValidationError(f"Job type must be >= 1, got {self.job_type}")
        if not 1 <= self.duration <= MAX_DURATION:
            raise JobValidationError(
                f"Duration must be between 1 and {MAX_DURATION}, got {self.duration}"
            ).with_context(job_type=self.job_type, duration=self.duration)


@dataclass(frozen=True)
class Message:
    """In-process form of one wire record.

    Example:
        >>> Message.run(5)
        Message(kind=<MessageKind.RUN: 'run'>, duration=5)
        >>> Message.stop().is_stop
        True
    """

    kind: MessageKind
    duration: int = 0

    @classmethod
    def run(cls, duration: int) -> Message:
        if not 1 <= duration <= MAX_DURATION:
            raise JobValidationError(f"Duration must be between 1 and {MAX_DURATION}, got {duration}")
        return cls(MessageKind.RUN, duration)

    @classmethod
    def stop(cls) -> Message:
        return cls(MessageKind.STOP, 0)

    @property
    def is_stop(self) -> bool:
        return self.kind is MessageKind.STOP


@dataclass(frozen=True)
class DispatchEvent:
    """A job was sent to a worker."""

    sequence: int
    worker_index: int
    job_type: JobType
    duration: int
    pid: int


@dataclass(frozen=True)
class CompletionEvent:
    """A worker echoed a finished job back."""

    sequence: int
    worker_index: int
    job_type: JobType
    duration: int
    pid: int


@dataclass
class RunReport:
    """Outcome of one :meth:`WorkerPool.run` call."""

    dispatched: list[DispatchEvent] = field(default_factory=list)
    completed: list[CompletionEvent] = field(default_factory=list)
    pending: list[JobDescriptor] = field(default_factory=list)
    drained: bool = False
    elapsed: float = 0.0

    @property
    def in_flight(self) -> int:
        """Jobs dispatched but never observed completing."""
        return len(self.dispatched) - len(self.completed)

    def to_dict(self) -> dict[str, object]:
        return {
            "dispatched": len(self.dispatched),
            "completed": len(self.completed),
            "pending": len(self.pending),
            "in_flight": self.in_flight,
            "drained": self.drained,
            "elapsed": round(self.elapsed, 3),
        }


__all__ = [
    "JobType",
    "MAX_DURATION",
    "WorkerState",
    "MessageKind",
    "JobDescriptor",
    "Message",
    "DispatchEvent",
    "CompletionEvent",
    "RunReport",
]
