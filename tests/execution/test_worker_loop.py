"""Tests for the worker loop, run in-process over real pipes."""

import os

import pytest

from pipepool.execution.channel import RECORD_SIZE, bytes_available, encode_message, read_exactly
from pipepool.execution.models import Message
from pipepool.execution import worker as worker_mod
from pipepool.execution.worker import run_worker, simulate_work


class _Link:
    """Request and response pipes seen from the manager's side."""

    def __init__(self) -> None:
        self.req_r, self.req_w = os.pipe()
        self.resp_r, self.resp_w = os.pipe()
        self._open = {self.req_r, self.req_w, self.resp_r, self.resp_w}

    def send(self, *messages: Message) -> None:
        for message in messages:
            os.write(self.req_w, encode_message(message))

    def close(self, fd: int) -> None:
        if fd in self._open:
            self._open.discard(fd)
            os.close(fd)

    def responses(self) -> list[int]:
        out = []
        while bytes_available(self.resp_r) >= RECORD_SIZE:
            out.append(int.from_bytes(read_exactly(self.resp_r, RECORD_SIZE), "little", signed=True))
        return out

    def close_all(self) -> None:
        for fd in list(self._open):
            self.close(fd)


@pytest.fixture
def link():
    lk = _Link()
    yield lk
    lk.close_all()


@pytest.fixture
def work_log():
    calls: list[tuple[int, float]] = []

    def _work(duration: int, time_unit: float) -> None:
        calls.append((duration, time_unit))

    _work.calls = calls  # type: ignore[attr-defined]
    return _work


def _run(link: _Link, work, **kwargs) -> int:
    return run_worker(2, link.req_r, link.resp_w, work=work, **kwargs)


class TestRunWorker:
    def test_echoes_each_job_then_stops(self, link, work_log):
        link.send(Message.run(3), Message.run(1), Message.stop())

        assert _run(link, work_log, time_unit=0.5) == 0

        assert work_log.calls == [(3, 0.5), (1, 0.5)]
        assert link.responses() == [3, 1]

    def test_stop_on_idle_worker_writes_nothing(self, link, work_log):
        link.send(Message.stop())

        assert _run(link, work_log) == 0

        assert work_log.calls == []
        assert link.responses() == []

    def test_requests_after_stop_are_ignored(self, link, work_log):
        link.send(Message.stop(), Message.run(5))
        _run(link, work_log)
        assert work_log.calls == []

    def test_eof_terminates_cleanly(self, link, work_log):
        link.send(Message.run(2))
        link.close(link.req_w)

        assert _run(link, work_log) == 0

        assert link.responses() == [2]

    def test_partial_record_terminates(self, link, work_log):
        os.write(link.req_w, b"\x05\x00")
        link.close(link.req_w)

        assert _run(link, work_log) == 0
        assert work_log.calls == []

    def test_negative_record_terminates(self, link, work_log):
        os.write(link.req_w, (-4).to_bytes(4, "little", signed=True))
        link.send(Message.run(1))

        assert _run(link, work_log) == 0
        assert work_log.calls == []

    def test_write_failure_terminates(self, link, work_log):
        link.send(Message.run(1), Message.run(2))
        link.close(link.resp_r)

        assert _run(link, work_log) == 0

        # First job was worked on, its echo failed, the second never started.
        assert work_log.calls == [(1, 1.0)]


class TestSimulateWork:
    def test_sleeps_duration_times_unit(self, monkeypatch):
        slept = []
        monkeypatch.setattr(worker_mod.time, "sleep", slept.append)
        simulate_work(4, 0.25)
        assert slept == [1.0]
