"""
Tests for bounded worker pools.
"""

import threading

import pytest

from pricesync.ingestion.errors import OverloadedError
from pricesync.tasks.executor import BoundedExecutor, OverflowPolicy, get_pool, shutdown_pools


@pytest.fixture
def gate():
    event = threading.Event()
    yield event
    event.set()


def _fill(pool, gate):
    """Occupy the single worker and the single queue slot."""
    running = pool.submit(gate.wait, 5)
    queued = pool.submit(lambda: "queued")
    return running, queued


class TestBoundedExecutor:
    def test_reject_when_full(self, gate):
        pool = BoundedExecutor("test-reject", max_workers=1, queue_capacity=1, overflow=OverflowPolicy.REJECT)
        running, queued = _fill(pool, gate)

        with pytest.raises(OverloadedError) as exc_info:
            pool.submit(lambda: "overflow")

        assert exc_info.value.pool_name == "test-reject"
        gate.set()
        assert running.result(timeout=5) is True
        assert queued.result(timeout=5) == "queued"
        assert pool.stats == {"submitted": 2, "caller_runs": 0, "rejected": 1}
        pool.shutdown()

    def test_caller_runs_when_full(self, gate):
        pool = BoundedExecutor("test-caller", max_workers=1, queue_capacity=1, overflow="caller_runs")
        _fill(pool, gate)

        future = pool.submit(threading.get_ident)

        assert future.done()
        assert future.result() == threading.get_ident()
        assert pool.stats["caller_runs"] == 1
        gate.set()
        pool.shutdown()

    def test_caller_run_failure_is_kept_on_future(self, gate):
        pool = BoundedExecutor("test-error", max_workers=1, queue_capacity=0)
        pool.submit(gate.wait, 5)

        def explode():
            raise RuntimeError("boom")

        future = pool.submit(explode)

        assert isinstance(future.exception(), RuntimeError)
        gate.set()
        pool.shutdown()

    def test_slots_are_released(self):
        pool = BoundedExecutor("test-release", max_workers=1, queue_capacity=0, overflow=OverflowPolicy.REJECT)

        for value in range(3):
            assert pool.submit(lambda v=value: v * 2).result(timeout=5) == value * 2
            pool._executor.submit(lambda: None).result(timeout=5)

        assert pool.stats["rejected"] == 0
        pool.shutdown()


class TestSharedPools:
    def test_named_pools_are_shared(self):
        try:
            assert get_pool("export") is get_pool("export")
            assert get_pool("export").overflow == OverflowPolicy.REJECT
            assert get_pool("file_processing").overflow == OverflowPolicy.CALLER_RUNS
        finally:
            shutdown_pools()

    def test_unknown_pool(self):
        with pytest.raises(ValueError):
            get_pool("reports")
