"""
Root Typer application for pipepool.

Role selection:
    ``pipepool [OPTIONS]``            run the manager (dispatcher)
    ``pipepool worker TYPE [OPTIONS]`` run a worker for one job type

A worker is started once per pool slot and must not write anything to
stdout, which is its response channel.

Exit codes:
    0  all jobs completed and every worker shut down
    1  startup failure (channel or process creation) or invalid settings
    2  usage error (bad options, unreadable or malformed job stream)
    3  ``--timeout`` expired before the queue drained
"""

from __future__ import annotations

import sys
from pathlib import Path

import typer
from pydantic import ValidationError
from typer import Typer

EXIT_STARTUP_FAILURE = 1
EXIT_TIMEOUT = 3

app = Typer(
    name="pipepool",
    help="pipepool — dispatch typed jobs to a fixed pool of worker processes.",
    invoke_without_command=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from pipepool import __version__

        typer.echo(f"pipepool {__version__}")
        raise typer.Exit()


# ── Manager (no sub-command) ─────────────────────────────────────────────


@app.callback()
def main(
    ctx: typer.Context,
    jobs: Path | None = typer.Option(  # noqa: UP007
        None,
        "--jobs",
        "-j",
        help="Job stream, one 'TYPE DURATION' per line ('-' for stdin). Default: built-in example.",
    ),
    pool: str | None = typer.Option(  # noqa: UP007
        None, "--pool", "-p", help="Worker counts per job type, e.g. '1=1,2=3'."
    ),
    time_unit: float | None = typer.Option(  # noqa: UP007
        None, "--time-unit", help="Seconds of simulated work per duration unit."
    ),
    poll_interval: float | None = typer.Option(  # noqa: UP007
        None, "--poll-interval", help="Max pause between dispatch passes (seconds)."
    ),
    timeout: float | None = typer.Option(  # noqa: UP007
        None, "--timeout", help="Give up if the queue has not drained after this many seconds."
    ),
    log_level: str | None = typer.Option(None, "--log-level", "-l", help="Log level."),  # noqa: UP007
    json_logs: bool | None = typer.Option(  # noqa: UP007
        None, "--json-logs/--console-logs", help="Force JSON or console log output."
    ),
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Run the dispatcher: spawn the pool, route every job, shut down."""
    if ctx.invoked_subcommand is not None:
        return

    from pipepool.cli.utils import err_console
    from pipepool.core.errors import ConfigError, JobValidationError
    from pipepool.core.settings import parse_pool_spec

    try:
        pool_config = parse_pool_spec(pool) if pool is not None else None
    except ConfigError as exc:
        raise typer.BadParameter(exc.message, param_hint="--pool") from exc

    try:
        job_list = _load_jobs(jobs)
    except JobValidationError as exc:
        raise typer.BadParameter(exc.message, param_hint="--jobs") from exc
    except OSError as exc:
        raise typer.BadParameter(str(exc), param_hint="--jobs") from exc

    try:
        settings = _settings(
            pool=pool_config,
            time_unit=time_unit,
            poll_interval=poll_interval,
            log_level=log_level,
            json_logs=json_logs,
        )
    except (ConfigError, ValidationError) as exc:
        err_console.print(f"[bold red]Invalid settings:[/bold red] {exc}")
        raise typer.Exit(code=EXIT_STARTUP_FAILURE)

    code = _run_manager(settings, job_list, timeout=timeout)
    raise typer.Exit(code=code)


def _load_jobs(path: Path | None) -> list:
    from pipepool.execution.jobs import REFERENCE_JOBS, load_jobs

    if path is None:
        return list(REFERENCE_JOBS)
    return load_jobs(path)


def _settings(**overrides: object):
    from pipepool.core.settings import get_settings

    return get_settings(**{k: v for k, v in overrides.items() if v is not None})


def _run_manager(settings, job_list: list, *, timeout: float | None) -> int:
    from pipepool.cli.utils import console, err_console, print_report
    from pipepool.core.errors import StartupFailure
    from pipepool.core.logging import configure_logging
    from pipepool.execution.pool import WorkerPool

    configure_logging(level=settings.log_level, json_format=settings.json_logs, stream=sys.stdout)

    pool = WorkerPool.from_settings(settings)
    try:
        pool.start()
    except StartupFailure as exc:
        err_console.print(f"[bold red]Startup failed:[/bold red] {exc.message}")
        if exc.cause is not None:
            err_console.print(f"  caused by: {exc.cause}")
        return EXIT_STARTUP_FAILURE

    try:
        with pool:
            report = pool.run(job_list, timeout=timeout)
    except KeyboardInterrupt:
        err_console.print("\n[yellow]Interrupted, workers stopped[/yellow]")
        return 130

    print_report(pool, report)
    if not report.drained:
        err_console.print(
            f"[bold yellow]Timed out[/bold yellow] with {len(report.pending)} job(s) queued "
            f"and {report.in_flight} in flight."
        )
        return EXIT_TIMEOUT

    console.print("All jobs completed and workers terminated.")
    return 0


# ── Worker ───────────────────────────────────────────────────────────────


@app.command("worker")
def worker(
    job_type: int = typer.Argument(..., min=1, help="Job type this worker serves."),
    time_unit: float = typer.Option(1.0, "--time-unit", min=0.0, help="Seconds per duration unit."),
    log_level: str = typer.Option("INFO", "--log-level", "-l", help="Log level."),
    json_logs: bool | None = typer.Option(  # noqa: UP007
        None, "--json-logs/--console-logs", help="Force JSON or console log output."
    ),
) -> None:
    """Run as a worker: read requests on stdin, answer on stdout."""
    from pipepool.execution.worker import worker_main

    code = worker_main(job_type, time_unit=time_unit, log_level=log_level, json_logs=json_logs)
    raise typer.Exit(code=code)
