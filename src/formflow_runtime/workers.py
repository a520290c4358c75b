"""
Bounded worker pool for background units of work.

A fixed number of worker tasks drain one queue. Each unit of work also
takes its tenant's semaphore, so a burst from one tenant cannot occupy
every worker. Nothing is spawned per submission.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

WorkFactory = Callable[[], Awaitable[object]]


@dataclass(frozen=True)
class WorkItem:
    tenant_id: str
    name: str
    factory: WorkFactory


class WorkerPool:
    def __init__(self, concurrency: int = 8, per_tenant_limit: int = 4) -> None:
        if concurrency < 1 or per_tenant_limit < 1:
            raise ValueError("concurrency and per_tenant_limit must be >= 1")
        self.concurrency = concurrency
        self.per_tenant_limit = per_tenant_limit
        self._queue: asyncio.Queue[WorkItem] | None = None
        self._workers: list[asyncio.Task] = []
        self._tenant_sems: dict[str, asyncio.Semaphore] = {}
        self._active = 0
        self._max_active = 0

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue else 0

    @property
    def max_active(self) -> int:
        """Highest number of units of work observed running at once."""
        return self._max_active

    def start(self) -> None:
        if self._workers:
            return
        self._queue = asyncio.Queue()
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"formflow-worker-{i}")
            for i in range(self.concurrency)
        ]

    def submit(self, tenant_id: str, factory: WorkFactory, *, name: str = "work") -> None:
        """Queue a unit of work. Starts the pool on first use."""
        if not self._workers:
            self.start()
        assert self._queue is not None
        self._queue.put_nowait(WorkItem(tenant_id=tenant_id, name=name, factory=factory))

    async def drain(self) -> None:
        """Wait until every queued unit of work has finished."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self, *, drain: bool = True) -> None:
        if drain:
            await self.drain()
        workers, self._workers = self._workers, []
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        self._queue = None

    def _tenant_sem(self, tenant_id: str) -> asyncio.Semaphore:
        sem = self._tenant_sems.get(tenant_id)
        if sem is None:
            sem = asyncio.Semaphore(self.per_tenant_limit)
            self._tenant_sems[tenant_id] = sem
        return sem

    async def _worker(self, index: int) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            item = await queue.get()
            try:
                async with self._tenant_sem(item.tenant_id):
                    self._active += 1
                    self._max_active = max(self._max_active, self._active)
                    try:
                        await item.factory()
                    finally:
                        self._active -= 1
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Unit of work %s for tenant %s failed", item.name, item.tenant_id)
            finally:
                queue.task_done()


__all__ = [
    "WorkItem",
    "WorkerPool",
]
