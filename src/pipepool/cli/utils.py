"""
CLI utility helpers — console handles and result rendering.
"""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

from pipepool.execution.models import RunReport
from pipepool.execution.pool import WorkerPool

console = Console()
err_console = Console(stderr=True)


def render_workers(pool: WorkerPool) -> Table:
    """One row per worker: type, pid, jobs completed, final state, exit code."""
    table = Table(title="Workers", show_lines=False)
    table.add_column("#", justify="right")
    table.add_column("Type", justify="right")
    table.add_column("PID", justify="right")
    table.add_column("Completed", justify="right")
    table.add_column("State")
    table.add_column("Exit", justify="right")

    for worker in pool.workers:
        state = worker.state.value
        style = "green" if worker.is_idle else "red"
        table.add_row(
            str(worker.index),
            str(worker.job_type),
            str(worker.pid),
            str(worker.completed),
            f"[{style}]{state}[/{style}]",
            "-" if worker.returncode is None else str(worker.returncode),
        )
    return table


def print_report(pool: WorkerPool, report: RunReport) -> None:
    """Render the worker table and a one-line run summary."""
    console.print(render_workers(pool))
    summary = report.to_dict()
    console.print(
        f"dispatched={summary['dispatched']} completed={summary['completed']} "
        f"pending={summary['pending']} in_flight={summary['in_flight']} "
        f"elapsed={summary['elapsed']}s"
    )
