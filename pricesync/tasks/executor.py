"""
Bounded Worker Pools
In-process thread pools for import and export jobs with explicit overflow handling.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Any, Callable, Dict, Optional

from pricesync.config.settings import get_settings
from pricesync.ingestion.errors import OverloadedError

logger = logging.getLogger(__name__)


class OverflowPolicy(str, Enum):
    """What happens to a submission when workers and queue are all taken."""

    CALLER_RUNS = "caller_runs"
    REJECT = "reject"


class BoundedExecutor:
    """
    ThreadPoolExecutor with a capacity of max_workers + queue_capacity.

    A submission beyond capacity is never dropped: with CALLER_RUNS it runs
    synchronously on the submitting thread, with REJECT it raises
    OverloadedError.
    """

    def __init__(
        self,
        name: str,
        max_workers: int,
        queue_capacity: int,
        overflow: OverflowPolicy = OverflowPolicy.CALLER_RUNS,
    ):
        self.name = name
        self.max_workers = max(1, max_workers)
        self.queue_capacity = max(0, queue_capacity)
        self.overflow = OverflowPolicy(overflow)
        self._slots = threading.BoundedSemaphore(self.max_workers + self.queue_capacity)
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix=name)

        # Statistics tracking
        self.stats = {"submitted": 0, "caller_runs": 0, "rejected": 0}

    def submit(self, fn: Callable[..., Any], *args, **kwargs) -> Future:
        """
        Schedule fn(*args, **kwargs).

        Returns:
            Future of the result (already resolved when the caller ran it)

        Raises:
            OverloadedError: if the pool is full and the policy is REJECT
        """
        if not self._slots.acquire(blocking=False):
            return self._overflow(fn, *args, **kwargs)

        try:
            future = self._executor.submit(fn, *args, **kwargs)
        except Exception:
            self._slots.release()
            raise
        future.add_done_callback(lambda _: self._slots.release())
        self.stats["submitted"] += 1
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _overflow(self, fn: Callable[..., Any], *args, **kwargs) -> Future:
        if self.overflow == OverflowPolicy.REJECT:
            self.stats["rejected"] += 1
            logger.warning(f"Pool '{self.name}' is full, rejecting submission")
            raise OverloadedError(self.name)

        self.stats["caller_runs"] += 1
        logger.warning(f"Pool '{self.name}' is full, running submission on the caller thread")
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


_pools: Dict[str, BoundedExecutor] = {}
_pools_lock = threading.Lock()


def get_pool(name: str) -> BoundedExecutor:
    """
    Shared pool by name: "file_processing" or "export".

    Sizes and overflow policies come from settings. The core size only
    matters for the Celery worker concurrency; in-process pools grow to
    their maximum on demand.
    """
    settings = get_settings()
    configs = {
        "file_processing": (
            settings.file_pool_max_size,
            settings.file_pool_queue_capacity,
            settings.file_pool_overflow,
        ),
        "export": (
            settings.export_pool_max_size,
            settings.export_pool_queue_capacity,
            settings.export_pool_overflow,
        ),
    }
    if name not in configs:
        raise ValueError(f"Unknown pool '{name}'")

    with _pools_lock:
        pool = _pools.get(name)
        if pool is None:
            max_workers, queue_capacity, overflow = configs[name]
            pool = BoundedExecutor(name, max_workers, queue_capacity, OverflowPolicy(overflow))
            _pools[name] = pool
            logger.info(
                f"Created pool '{name}' (workers={max_workers}, queue={queue_capacity}, "
                f"overflow={overflow})"
            )
        return pool


def shutdown_pools(wait: bool = True) -> None:
    with _pools_lock:
        for pool in _pools.values():
            pool.shutdown(wait=wait)
        _pools.clear()


def run_in_pool(name: str, fn: Callable[..., Any], *args, **kwargs) -> Future:
    """Submit to a shared pool; see BoundedExecutor.submit."""
    return get_pool(name).submit(fn, *args, **kwargs)
