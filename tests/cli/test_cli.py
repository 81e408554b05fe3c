"""
Tests for the pipepool CLI: role selection, options and exit codes.

Manager runs spawn real workers; ``--time-unit 0.01`` keeps them short.
"""

from __future__ import annotations

import re

import pytest
from typer.testing import CliRunner

from pipepool import __version__
from pipepool.cli.app import app

runner = CliRunner()

FAST = ["--time-unit", "0.01", "--log-level", "WARNING"]

# Plain, wide help output regardless of the terminal the tests run in
PLAIN_ENV = {"NO_COLOR": "1", "TERM": "dumb", "COLUMNS": "200", "TERMINAL_WIDTH": "200"}
ANSI = re.compile(r"\x1b\[[0-9;]*m")


def help_text(args: list[str]) -> str:
    result = runner.invoke(app, args, env=PLAIN_ENV)
    assert result.exit_code == 0, result.output
    return ANSI.sub("", result.output)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for key in ("LOG_LEVEL", "JSON_LOGS", "POLL_INTERVAL", "TIME_UNIT", "POOL", "WORKER_EXECUTABLE"):
        monkeypatch.delenv(f"PIPEPOOL_{key}", raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def jobs_file(tmp_path):
    def _write(text: str):
        path = tmp_path / "jobs.txt"
        path.write_text(text)
        return str(path)

    return _write


class TestRootApp:
    def test_help(self):
        text = help_text(["--help"])
        assert "worker" in text
        assert "--jobs" in text

    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"pipepool {__version__}" in result.output

    def test_worker_help(self):
        text = help_text(["worker", "--help"])
        assert "job_type" in text.lower()
        assert "--time-unit" in text

    def test_worker_requires_positive_type(self):
        result = runner.invoke(app, ["worker", "0"])
        assert result.exit_code == 2


@pytest.mark.timeout(120)
class TestManager:
    def test_runs_job_file_to_completion(self, jobs_file):
        path = jobs_file("1 2\n2 1\n2 1\n")
        result = runner.invoke(app, ["--jobs", path, "--pool", "1=1,2=2", *FAST])
        assert result.exit_code == 0, result.output
        assert "All jobs completed and workers terminated." in result.output

    def test_reference_jobs_with_default_pool(self):
        result = runner.invoke(app, FAST)
        assert result.exit_code == 0, result.output
        assert "All jobs completed and workers terminated." in result.output

    def test_jobs_from_stdin(self):
        result = runner.invoke(app, ["--jobs", "-", "--pool", "3=1", *FAST], input="3 1\n3 1\n")
        assert result.exit_code == 0, result.output

    def test_json_logs(self, jobs_file):
        path = jobs_file("1 1\n")
        result = runner.invoke(app, ["--jobs", path, "--pool", "1=1", "--json-logs", "--time-unit", "0.01"])
        assert result.exit_code == 0, result.output
        assert '"event": "job.completed"' in result.output

    def test_timeout_exit_code(self, jobs_file):
        path = jobs_file("9 1\n")
        result = runner.invoke(app, ["--jobs", path, "--pool", "1=1", "--timeout", "0.5", *FAST])
        assert result.exit_code == 3

    def test_startup_failure_exit_code(self):
        result = runner.invoke(
            app,
            ["--pool", "1=1", *FAST],
            env={"PIPEPOOL_WORKER_EXECUTABLE": "/nonexistent/python"},
        )
        assert result.exit_code == 1


class TestUsageErrors:
    def test_malformed_jobs_file(self, jobs_file):
        path = jobs_file("1 1\nnot a job\n")
        result = runner.invoke(app, ["--jobs", path, *FAST])
        assert result.exit_code == 2

    def test_zero_duration_job(self, jobs_file):
        path = jobs_file("1 0\n")
        result = runner.invoke(app, ["--jobs", path, *FAST])
        assert result.exit_code == 2

    def test_missing_jobs_file(self, tmp_path):
        result = runner.invoke(app, ["--jobs", str(tmp_path / "missing.txt"), *FAST])
        assert result.exit_code == 2

    def test_bad_pool_spec(self):
        result = runner.invoke(app, ["--pool", "one=1", *FAST])
        assert result.exit_code == 2

    def test_invalid_settings(self):
        result = runner.invoke(app, FAST, env={"PIPEPOOL_POLL_INTERVAL": "0"})
        assert result.exit_code == 1
