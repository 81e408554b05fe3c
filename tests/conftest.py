"""
Shared pytest fixtures and configuration for pipepool tests.

This module provides:
- ``src/`` on ``sys.path`` so tests run from a plain checkout
- Location-based markers (``integration`` for anything spawning workers)
- structlog reset between tests, so a CLI test's captured stream never
  outlives the test that configured it
- Small helpers to build pools that finish in milliseconds
"""

import sys
from pathlib import Path

import pytest
import structlog

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from pipepool.execution.pool import WorkerPool  # noqa: E402

# Seconds per duration unit used by tests that spawn real workers
TEST_TIME_UNIT = 0.05


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location and fixtures."""
    for item in items:
        fixtures = getattr(item, "fixturenames", ())
        if "make_pool" in fixtures or "scenario" in item.name:
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_structlog():
    """Restore structlog defaults after every test."""
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def make_pool():
    """Factory for started pools; every pool is shut down at teardown.

    Example:
        def test_x(make_pool):
            pool = make_pool({1: 1})
            report = pool.run([JobDescriptor(1, 1)], timeout=10)
    """
    pools: list[WorkerPool] = []

    def _make(config, **kwargs) -> WorkerPool:
        kwargs.setdefault("time_unit", TEST_TIME_UNIT)
        kwargs.setdefault("poll_interval", 0.005)
        kwargs.setdefault("log_level", "WARNING")
        pool = WorkerPool(config, **kwargs)
        pools.append(pool)
        pool.start()
        return pool

    yield _make

    for pool in pools:
        pool.shutdown(kill=True)
