"""Worker process loop — one job at a time, end to end.

A worker blocks on its request stream, performs the simulated work for the
requested duration, echoes the duration back on its response stream, and
repeats. It stops on the stop sentinel (normal shutdown) or on any transport
failure (the manager is gone, there is nobody to retry for).

Usage (programmatic)::

    from pipepool.execution.worker import run_worker

    run_worker(job_type=2, inbound_fd=0, outbound_fd=1, time_unit=0.1)

Usage (CLI, spawned by the manager)::

    python -m pipepool worker 2 --time-unit 0.1
"""

from __future__ import annotations

import os
import sys
import time
from collections.abc import Callable

from pipepool.core.errors import TransportFailure
from pipepool.core.logging import LogContext, configure_logging, get_logger
from pipepool.execution.channel import (
    RECORD_SIZE,
    decode_message,
    encode_message,
    read_exactly,
    write_exactly,
)

logger = get_logger(__name__)

WorkFn = Callable[[int, float], None]


def simulate_work(duration: int, time_unit: float) -> None:
    """Stand-in for the real job payload: sleep ``duration * time_unit`` seconds."""
    time.sleep(duration * time_unit)


def run_worker(
    job_type: int,
    inbound_fd: int,
    outbound_fd: int,
    *,
    work: WorkFn = simulate_work,
    time_unit: float = 1.0,
) -> int:
    """Serve requests until the stop sentinel or a transport failure.

    Returns:
        Process exit code. Always 0: both ways out are clean exits.
    """
    jobs_done = 0
    while True:
        try:
            message = decode_message(read_exactly(inbound_fd, RECORD_SIZE))
        except TransportFailure as exc:
            logger.warning("worker.read_failed", job_type=job_type, jobs_done=jobs_done, **exc.to_dict())
            return 0

        if message.is_stop:
            logger.info("worker.stopping", job_type=job_type, jobs_done=jobs_done)
            return 0

        logger.debug("worker.job_started", job_type=job_type, duration=message.duration)
        work(message.duration, time_unit)

        try:
            write_exactly(outbound_fd, encode_message(message))
        except TransportFailure as exc:
            logger.warning("worker.write_failed", job_type=job_type, jobs_done=jobs_done, **exc.to_dict())
            return 0
        jobs_done += 1
        logger.debug("worker.job_finished", job_type=job_type, duration=message.duration)


def worker_main(
    job_type: int,
    *,
    time_unit: float = 1.0,
    log_level: str = "INFO",
    json_logs: bool | None = None,
) -> int:
    """Process entry point: stdin is the request stream, stdout the response stream.

    The response stream is moved to a private descriptor and fd 1 is pointed
    at stderr before anything can print, so nothing but records ever reaches
    the manager.
    """
    outbound_fd = os.dup(1)
    os.dup2(2, 1)
    inbound_fd = 0

    configure_logging(level=log_level, json_format=json_logs, service="pipepool.worker", stream=sys.stderr)

    with LogContext(job_type=job_type, pid=os.getpid()):
        logger.info("worker.started", message=f"worker started, handling job type {job_type}")
        try:
            return run_worker(job_type, inbound_fd, outbound_fd, time_unit=time_unit)
        except KeyboardInterrupt:
            return 0
        finally:
            os.close(outbound_fd)


__all__ = ["WorkFn", "simulate_work", "run_worker", "worker_main"]
