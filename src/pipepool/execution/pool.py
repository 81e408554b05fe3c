"""Worker pool manager — spawns typed workers and routes jobs to them.

ARCHITECTURE
────────────
::

    WorkerPool({1: 1, 2: 3})
      ├── .start()              ─ open channel + spawn, per instance
      ├── .run(jobs, timeout)   ─ dispatch loop until drained
      │     ├── poll()          ─ consume ready completions (never blocks)
      │     ├── dispatch_next() ─ front job → first idle worker of its type
      │     └── _wait()         ─ bounded readiness wait over busy workers
      └── .shutdown()           ─ stop sentinel to all, then join each

The pool is single-threaded and cooperative. Only the dispatch loop touches
the queue and the worker table, so there is no locking. A worker is BUSY
exactly while one request is outstanding on its channel.

Failure handling:
    - Startup: any channel or spawn failure tears down what was started and
      raises :class:`StartupFailure`.
    - Steady state: transport failures on one worker's channel are logged.
      The worker keeps its last known state, which may leave it BUSY forever
      if its process died mid-job. There is no timeout, requeue or health
      check.
    - A job whose type has no worker stays at the front of the queue and
      stalls the run. ``run(timeout=...)`` bounds the wait for callers who
      cannot accept that.

Example::

    with WorkerPool({1: 1, 2: 3}, time_unit=0.1) as pool:
        report = pool.run([JobDescriptor(1, 2), JobDescriptor(2, 1)])
    assert report.drained
"""

from __future__ import annotations

import os
import selectors
import subprocess
import sys
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import TracebackType
from typing import Any

from pipepool.core.errors import (
    PoolError,
    ProtocolViolation,
    StartupFailure,
    TransportFailure,
)
from pipepool.core.logging import get_logger
from pipepool.core.settings import PoolSettings, validate_pool_config
from pipepool.execution.channel import RECORD_SIZE, DuplexChannel, open_channel
from pipepool.execution.jobs import JobQueue
from pipepool.execution.models import (
    CompletionEvent,
    DispatchEvent,
    JobDescriptor,
    Message,
    RunReport,
    WorkerState,
)

logger = get_logger(__name__)

# src/ directory holding the pipepool package, prepended to the workers' PYTHONPATH
_PACKAGE_ROOT = Path(__file__).resolve().parents[2]

# Seconds a worker gets to exit after the stop sentinel on an aborted run
ABORT_GRACE_SECONDS = 2.0


@dataclass
class WorkerDescriptor:
    """One worker process and the manager side of its channel."""

    index: int
    job_type: int
    channel: DuplexChannel
    process: subprocess.Popen[bytes]
    state: WorkerState = WorkerState.IDLE
    current: JobDescriptor | None = None
    completed: int = 0
    # Set once a partial response record from the live process was logged
    stalled: bool = field(default=False, repr=False)
    returncode: int | None = field(default=None, repr=False)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def is_idle(self) -> bool:
        return self.state is WorkerState.IDLE

    def describe(self) -> dict[str, Any]:
        """Fields used on every log line about this worker."""
        return {"worker_index": self.index, "job_type": self.job_type, "pid": self.pid}


class WorkerPool:
    """Fixed-size pool of typed worker subprocesses.

    Parameters
    ----------
    config : Mapping[int, int]
        Job type → number of worker instances. Types with count 0 get no
        worker; jobs of that type will never be dispatched.
    time_unit : float
        Seconds of simulated work per unit of job duration (passed to workers).
    poll_interval : float
        Upper bound on the pause between two passes of the dispatch loop.
    executable : str | None
        Python interpreter used to spawn workers (defaults to ``sys.executable``).
    log_level, json_logs :
        Forwarded to the workers' logging configuration.
    on_dispatch, on_complete :
        Optional callbacks invoked synchronously from the dispatch loop.
    """

    def __init__(
        self,
        config: Mapping[int, int],
        *,
        time_unit: float = 1.0,
        poll_interval: float = 0.01,
        executable: str | None = None,
        log_level: str = "INFO",
        json_logs: bool | None = None,
        on_dispatch: Callable[[DispatchEvent], None] | None = None,
        on_complete: Callable[[CompletionEvent], None] | None = None,
    ) -> None:
        validate_pool_config(dict(config))
        self._config = dict(sorted(config.items()))
        self._time_unit = time_unit
        self._poll_interval = poll_interval
        self._executable = executable or sys.executable
        self._log_level = log_level
        self._json_logs = json_logs
        self._on_dispatch = on_dispatch
        self._on_complete = on_complete

        self._workers: list[WorkerDescriptor] = []
        self._selector: selectors.BaseSelector | None = None
        self._sequence = 0
        self._started = False
        self._closed = False

    @classmethod
    def from_settings(cls, settings: PoolSettings, **kwargs: Any) -> WorkerPool:
        """Build a pool from :class:`PoolSettings`; ``kwargs`` override."""
        options: dict[str, Any] = {
            "time_unit": settings.time_unit,
            "poll_interval": settings.poll_interval,
            "executable": settings.worker_executable,
            "log_level": settings.log_level,
            "json_logs": settings.json_logs,
        }
        options.update(kwargs)
        config = options.pop("config", settings.pool)
        return cls(config, **options)

    # ── Introspection ────────────────────────────────────────────────

    @property
    def config(self) -> dict[int, int]:
        return dict(self._config)

    @property
    def workers(self) -> tuple[WorkerDescriptor, ...]:
        return tuple(self._workers)

    @property
    def started(self) -> bool:
        return self._started

    @property
    def closed(self) -> bool:
        return self._closed

    def idle_workers(self) -> list[WorkerDescriptor]:
        return [w for w in self._workers if w.state is WorkerState.IDLE]

    def busy_workers(self) -> list[WorkerDescriptor]:
        return [w for w in self._workers if w.state is WorkerState.BUSY]

    def all_idle(self) -> bool:
        return all(w.state is WorkerState.IDLE for w in self._workers)

    # ── Startup ──────────────────────────────────────────────────────

    def start(self) -> WorkerPool:
        """Spawn every configured worker.

        Raises:
            StartupFailure: A channel or process could not be created. Workers
                spawned before the failure are shut down first.
        """
        if self._started or self._closed:
            raise PoolError("Pool was already started")

        self._selector = selectors.DefaultSelector()
        try:
            for job_type, count in self._config.items():
                for _ in range(count):
                    self._workers.append(self._spawn(job_type, len(self._workers)))
        except StartupFailure as exc:
            logger.error("pool.startup_failed", spawned=len(self._workers), **exc.to_dict())
            self._started = True
            self.shutdown(kill=True)
            raise

        self._started = True
        logger.info("pool.started", workers=len(self._workers), config=self._config)
        return self

    def _worker_command(self, job_type: int) -> list[str]:
        command = [
            self._executable,
            "-m",
            "pipepool",
            "worker",
            str(job_type),
            "--time-unit",
            repr(float(self._time_unit)),
            "--log-level",
            self._log_level,
        ]
        if self._json_logs is not None:
            command.append("--json-logs" if self._json_logs else "--console-logs")
        return command

    def _worker_env(self) -> dict[str, str]:
        env = dict(os.environ)
        existing = env.get("PYTHONPATH")
        env["PYTHONPATH"] = str(_PACKAGE_ROOT) + (os.pathsep + existing if existing else "")
        return env

    def _spawn(self, job_type: int, index: int) -> WorkerDescriptor:
        channel, ends = open_channel()
        try:
            process = subprocess.Popen(
                self._worker_command(job_type),
                stdin=ends.request_fd,
                stdout=ends.response_fd,
                close_fds=True,
                env=self._worker_env(),
            )
        except (OSError, ValueError, subprocess.SubprocessError) as exc:
            channel.close()
            raise StartupFailure(
                f"Could not spawn worker for job type {job_type}", cause=exc
            ).with_context(job_type=job_type, worker_index=index) from exc
        finally:
            ends.close()

        worker = WorkerDescriptor(index=index, job_type=job_type, channel=channel, process=process)
        logger.info("worker.spawned", **worker.describe())
        return worker

    # ── Dispatch loop ────────────────────────────────────────────────

    def run(
        self,
        jobs: Iterable[JobDescriptor] | JobQueue,
        *,
        timeout: float | None = None,
    ) -> RunReport:
        """Dispatch ``jobs`` until the queue is empty and every worker is idle.

        Args:
            jobs: Jobs in dispatch order. A :class:`JobQueue` is consumed in place.
            timeout: Give up after this many seconds. ``None`` waits forever,
                which never returns if a queued job has no worker of its type.

        Returns:
            A :class:`RunReport`. ``drained`` is False when the timeout hit.
        """
        self._require_running()
        queue = jobs if isinstance(jobs, JobQueue) else JobQueue(jobs)
        report = RunReport()
        started_at = time.monotonic()
        deadline = None if timeout is None else started_at + timeout

        logger.info("dispatch.started", jobs=len(queue), workers=len(self._workers))
        while True:
            report.completed.extend(self.poll())

            event = self.dispatch_next(queue)
            if event is not None:
                report.dispatched.append(event)

            if not queue and self.all_idle():
                report.drained = True
                break

            if deadline is not None and time.monotonic() >= deadline:
                front = queue.front()
                logger.warning(
                    "dispatch.timeout",
                    pending=len(queue),
                    busy=len(self.busy_workers()),
                    blocked_job_type=front.job_type if front else None,
                )
                break

            self._wait()

        report.pending = list(queue)
        report.elapsed = time.monotonic() - started_at
        logger.info("dispatch.finished", **report.to_dict())
        return report

    def poll(self) -> list[CompletionEvent]:
        """Consume every completion record that is already buffered.

        Only BUSY workers are checked, and only with a non-blocking byte count,
        so one silent worker never holds up another.
        """
        self._require_running()
        events: list[CompletionEvent] = []
        for worker in self._workers:
            if worker.state is not WorkerState.BUSY:
                continue
            try:
                if not worker.channel.has_record():
                    continue
                message = worker.channel.receive()
            except TransportFailure as exc:
                logger.warning("worker.receive_failed", **worker.describe(), **exc.to_dict())
                continue

            if message.is_stop:
                violation = ProtocolViolation("Stop sentinel on the response stream")
                logger.warning(
                    "worker.protocol_violation",
                    state=worker.state.value,
                    **worker.describe(),
                    **violation.to_dict(),
                )
                continue

            expected = worker.current.duration if worker.current else None
            if expected is not None and message.duration != expected:
                logger.warning(
                    "job.echo_mismatch", expected=expected, echoed=message.duration, **worker.describe()
                )

            worker.state = WorkerState.IDLE
            worker.current = None
            worker.completed += 1
            worker.stalled = False
            self._unwatch(worker)

            event = CompletionEvent(
                sequence=self._next_sequence(),
                worker_index=worker.index,
                job_type=worker.job_type,
                duration=message.duration,
                pid=worker.pid,
            )
            logger.info("job.completed", duration=message.duration, **worker.describe())
            events.append(event)
            if self._on_complete is not None:
                self._on_complete(event)
        return events

    def dispatch_next(self, queue: JobQueue) -> DispatchEvent | None:
        """Send the front job to the first idle worker of its type.

        The front job is left in place when no such worker is idle; jobs
        behind it are never looked at. A failed send leaves both the job and
        the worker untouched and moves on to the next matching worker.
        """
        self._require_running()
        job = queue.front()
        if job is None:
            return None

        for worker in self._workers:
            if worker.job_type != job.job_type or worker.state is not WorkerState.IDLE:
                continue
            try:
                worker.channel.send(Message.run(job.duration))
            except TransportFailure as exc:
                logger.error("job.send_failed", duration=job.duration, **worker.describe(), **exc.to_dict())
                continue

            worker.state = WorkerState.BUSY
            worker.current = job
            queue.pop_front()
            self._watch(worker)

            event = DispatchEvent(
                sequence=self._next_sequence(),
                worker_index=worker.index,
                job_type=job.job_type,
                duration=job.duration,
                pid=worker.pid,
            )
            logger.info("job.dispatched", duration=job.duration, **worker.describe())
            if self._on_dispatch is not None:
                self._on_dispatch(event)
            return event
        return None

    def _next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence

    # ── Readiness wait ───────────────────────────────────────────────

    def _watch(self, worker: WorkerDescriptor) -> None:
        if self._selector is None or worker.channel.peer_closed:
            return
        if worker.channel.fileno() not in self._selector.get_map():
            self._selector.register(worker.channel.fileno(), selectors.EVENT_READ, worker)

    def _unwatch(self, worker: WorkerDescriptor) -> None:
        if self._selector is None:
            return
        if worker.channel.fileno() in self._selector.get_map():
            self._selector.unregister(worker.channel.fileno())

    def _wait(self) -> None:
        """Pause for ``poll_interval``, waking early once a response is complete.

        A response stream that reads as ready with nothing complete in it
        either belongs to a worker whose process is gone, which is logged once
        and no longer watched, or holds a partial record from a live worker,
        which is logged once and waited out like an empty stream.
        """
        if self._selector is None or not self._selector.get_map():
            time.sleep(self._poll_interval)
            return

        deadline = time.monotonic() + self._poll_interval
        for key, _ in self._selector.select(timeout=self._poll_interval):
            worker: WorkerDescriptor = key.data
            try:
                available = worker.channel.available()
            except TransportFailure as exc:
                logger.warning("worker.receive_failed", **worker.describe(), **exc.to_dict())
                available = 0
            if available >= RECORD_SIZE:
                return
            if available and worker.process.poll() is None:
                if not worker.stalled:
                    worker.stalled = True
                    violation = ProtocolViolation(f"Partial record: {available} of {RECORD_SIZE} bytes")
                    logger.warning(
                        "worker.protocol_violation",
                        state=worker.state.value,
                        **worker.describe(),
                        **violation.to_dict(),
                    )
                continue
            worker.channel.peer_closed = True
            self._unwatch(worker)
            if available:
                err = ProtocolViolation(
                    f"Worker exited after writing {available} of {RECORD_SIZE} bytes"
                )
            else:
                err = TransportFailure("Response stream closed by worker")
            logger.error(
                "worker.channel_closed",
                returncode=worker.process.poll(),
                state=worker.state.value,
                **worker.describe(),
                **err.to_dict(),
            )

        remaining = deadline - time.monotonic()
        if remaining > 0:
            time.sleep(remaining)

    # ── Shutdown ─────────────────────────────────────────────────────

    def shutdown(self, *, kill: bool = False) -> None:
        """Stop every worker and release all resources.

        Sends the stop sentinel to every worker, then joins each process in
        turn and closes its channel. BUSY workers finish their current job
        before they read the sentinel. Responses still in flight are not
        drained. With ``kill=True`` workers that have not exited within
        :data:`ABORT_GRACE_SECONDS` are killed. Calling twice is a no-op.
        """
        if self._closed:
            return
        self._closed = True

        for worker in self._workers:
            try:
                worker.channel.send(Message.stop())
            except TransportFailure as exc:
                logger.warning("worker.stop_failed", **worker.describe(), **exc.to_dict())

        for worker in self._workers:
            worker.returncode = self._join(worker, kill=kill)
            worker.channel.close()
            logger.debug("worker.joined", returncode=worker.returncode, **worker.describe())

        if self._selector is not None:
            self._selector.close()
            self._selector = None

        logger.info(
            "pool.shutdown",
            workers=len(self._workers),
            busy=len(self.busy_workers()),
        )

    def _join(self, worker: WorkerDescriptor, *, kill: bool) -> int:
        if not kill:
            return worker.process.wait()
        try:
            return worker.process.wait(timeout=ABORT_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            logger.warning("worker.killed", **worker.describe())
            worker.process.kill()
            return worker.process.wait()

    def _require_running(self) -> None:
        if not self._started:
            raise PoolError("Pool is not started")
        if self._closed:
            raise PoolError("Pool is shut down")

    # ── Context manager ──────────────────────────────────────────────

    def __enter__(self) -> WorkerPool:
        if not self._started:
            self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.shutdown(kill=exc_type is not None)

    def __repr__(self) -> str:
        return (
            f"WorkerPool(config={self._config}, workers={len(self._workers)}, "
            f"busy={len(self.busy_workers())}, closed={self._closed})"
        )


__all__ = ["ABORT_GRACE_SECONDS", "WorkerDescriptor", "WorkerPool"]
