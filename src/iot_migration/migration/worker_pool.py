"""Bounded worker pool for per-device registry calls.

A fixed number of worker tasks take actions from a queue. Submitting an
action first claims a free worker slot, so a producer enumerating thousands
of devices blocks until a worker is idle instead of queueing ahead of them.
"""

import asyncio
import threading
from collections.abc import Awaitable, Callable
from typing import Any

from iot_migration.utils.logging import get_logger

logger = get_logger(__name__)

Action = Callable[[], Awaitable[Any]]


class AtomicCounter:
    """Integer counter guarded by a lock."""

    def __init__(self, initial: int = 0):
        self._value = initial
        self._lock = threading.Lock()

    def increment(self, amount: int = 1) -> int:
        with self._lock:
            self._value += amount
            return self._value

    def set(self, value: int) -> None:
        with self._lock:
            self._value = value

    @property
    def count(self) -> int:
        with self._lock:
            return self._value


class WorkerPool:
    """Run zero-argument coroutine functions on ``max_workers`` worker tasks.

    Usage:
        async with WorkerPool(25) as pool:
            for device in devices:
                await pool.add_task(partial(migrate, device))
            await pool.wait()

    An exception escaping an action is logged and swallowed: per-device error
    handling belongs in the action itself, and one failure must never stall
    the barrier in :meth:`wait`.
    """

    def __init__(self, max_workers: int, name: str = "pool"):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers
        self.name = name
        self._queue: asyncio.Queue[Action] = asyncio.Queue(maxsize=1)
        # One permit per worker, released when its action finishes
        self._idle = asyncio.Semaphore(max_workers)
        self._workers: list[asyncio.Task[None]] = []
        self.outstanding = AtomicCounter()

    def start(self) -> None:
        """Spawn the worker tasks. Calling it twice has no effect."""
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"{self.name}-worker-{i}")
            for i in range(self.max_workers)
        ]
        logger.debug("worker_pool_started", pool=self.name, workers=self.max_workers)

    async def _worker(self, index: int) -> None:
        while True:
            action = await self._queue.get()
            try:
                await action()
            except Exception as e:
                logger.error(
                    "worker_action_failed",
                    pool=self.name,
                    worker=index,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            finally:
                self.outstanding.increment(-1)
                self._idle.release()
                self._queue.task_done()

    async def add_task(self, action: Action) -> None:
        """Hand an action to a worker, waiting while every worker is busy."""
        if not self._workers:
            self.start()
        await self._idle.acquire()
        self.outstanding.increment()
        await self._queue.put(action)

    async def wait(self) -> None:
        """Block until every enqueued action has finished."""
        await self._queue.join()

    async def close(self) -> None:
        """Cancel the worker tasks."""
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.debug("worker_pool_closed", pool=self.name)

    async def __aenter__(self) -> "WorkerPool":
        self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
