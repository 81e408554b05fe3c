"""Job queue and job sources.

The queue is strictly FIFO: the dispatch loop only ever looks at the front
job and removes it once a worker accepted it. Nothing is reordered or
skipped, so a job nobody can run blocks everything behind it.

Job streams are plain text, one job per line::

    # type duration
    1 3
    2,5

Blank lines and ``#`` comments are ignored.
"""

from __future__ import annotations

import sys
from collections import deque
from collections.abc import Iterable, Iterator
from pathlib import Path

from pipepool.core.errors import JobValidationError
from pipepool.execution.models import JobDescriptor

REFERENCE_JOBS: tuple[JobDescriptor, ...] = (
    JobDescriptor(1, 3),
    JobDescriptor(2, 5),
    JobDescriptor(1, 2),
    JobDescriptor(4, 7),
    JobDescriptor(3, 1),
    JobDescriptor(5, 1),
    JobDescriptor(1, 5),
)


class JobQueue:
    """Ordered queue of pending jobs, touched only by the dispatch loop."""

    def __init__(self, jobs: Iterable[JobDescriptor] = ()) -> None:
        self._jobs: deque[JobDescriptor] = deque()
        self.extend(jobs)

    def push(self, job: JobDescriptor) -> None:
        if not isinstance(job, JobDescriptor):
            raise JobValidationError(f"Expected JobDescriptor, got {type(job).__name__}")
        self._jobs.append(job)

    def extend(self, jobs: Iterable[JobDescriptor]) -> None:
        for job in jobs:
            self.push(job)

    def front(self) -> JobDescriptor | None:
        """The next job to dispatch, or None when empty."""
        return self._jobs[0] if self._jobs else None

    def pop_front(self) -> JobDescriptor:
        if not self._jobs:
            raise IndexError("pop from an empty JobQueue")
        return self._jobs.popleft()

    def __len__(self) -> int:
        return len(self._jobs)

    def __bool__(self) -> bool:
        return bool(self._jobs)

    def __iter__(self) -> Iterator[JobDescriptor]:
        return iter(list(self._jobs))

    def __repr__(self) -> str:
        return f"JobQueue({list(self._jobs)!r})"


def parse_jobs(lines: Iterable[str]) -> Iterator[JobDescriptor]:
    """Parse a job stream, yielding jobs in order.

    Raises:
        JobValidationError: A line is not ``TYPE DURATION`` or fails validation.
    """
    for lineno, raw in enumerate(lines, start=1):
        line = raw.split("#", 1)[0].strip()
        if not line:
            continue
        fields = line.replace(",", " ").split()
        if len(fields) != 2:
            raise JobValidationError(f"Line {lineno}: expected 'TYPE DURATION', got {raw.strip()!r}", line=lineno)
        try:
            job_type, duration = int(fields[0]), int(fields[1])
        except ValueError as exc:
            raise JobValidationError(f"Line {lineno}: not integers: {raw.strip()!r}", line=lineno, cause=exc) from exc
        try:
            job = JobDescriptor(job_type, duration)
        except JobValidationError as exc:
            raise JobValidationError(f"Line {lineno}: {exc.message}", line=lineno, cause=exc) from exc
        yield job


def load_jobs(path: str | Path) -> list[JobDescriptor]:
    """Read a job stream from a file, or from stdin when ``path`` is ``-``."""
    if str(path) == "-":
        return list(parse_jobs(sys.stdin))
    with open(path, encoding="utf-8") as fh:
        return list(parse_jobs(fh))


__all__ = ["REFERENCE_JOBS", "JobQueue", "parse_jobs", "load_jobs"]
