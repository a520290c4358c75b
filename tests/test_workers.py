"""
Tests for the bounded worker pool.
"""

import asyncio

import pytest

from formflow_runtime import SubmissionStatus, WorkerPool
from formflow_runtime.submissions import SubmissionFilter

from _testkit import TENANT, metadata


class LoadTracker:
    """Unit of work that records how many copies run at once."""

    def __init__(self) -> None:
        self.running = 0
        self.peak = 0
        self.done = 0

    async def __call__(self) -> None:
        self.running += 1
        self.peak = max(self.peak, self.running)
        await asyncio.sleep(0.01)
        self.running -= 1
        self.done += 1


class TestWorkerPool:
    def test_invalid_sizes(self):
        with pytest.raises(ValueError):
            WorkerPool(0)
        with pytest.raises(ValueError):
            WorkerPool(2, 0)

    @pytest.mark.asyncio
    async def test_concurrency_bounded(self):
        pool = WorkerPool(concurrency=3, per_tenant_limit=10)
        tracker = LoadTracker()
        for i in range(12):
            pool.submit(f"t-{i}", tracker)
        await pool.drain()

        assert tracker.done == 12
        assert tracker.peak <= 3
        assert pool.max_active <= 3
        await pool.stop()

    @pytest.mark.asyncio
    async def test_per_tenant_limit(self):
        pool = WorkerPool(concurrency=8, per_tenant_limit=2)
        busy, quiet = LoadTracker(), LoadTracker()
        for _ in range(10):
            pool.submit("t-busy", busy)
        pool.submit("t-quiet", quiet)
        await pool.drain()

        assert busy.peak <= 2
        assert quiet.done == 1
        await pool.stop()

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_pool(self):
        pool = WorkerPool(concurrency=1)
        tracker = LoadTracker()

        async def boom():
            raise RuntimeError("boom")

        pool.submit(TENANT, boom, name="boom")
        pool.submit(TENANT, tracker)
        await pool.drain()

        assert tracker.done == 1
        assert pool.running
        await pool.stop()
        assert not pool.running

    @pytest.mark.asyncio
    async def test_work_queued_by_work_is_drained(self):
        pool = WorkerPool(concurrency=2)
        tracker = LoadTracker()

        async def parent():
            pool.submit(TENANT, tracker, name="child")

        pool.submit(TENANT, parent, name="parent")
        await pool.drain()
        assert tracker.done == 1
        await pool.stop()


class TestEngineBackpressure:
    @pytest.mark.asyncio
    async def test_burst_processed_within_bounds(self, make_engine):
        engine = make_engine(worker_concurrency=3, per_tenant_concurrency=2)
        for i in range(20):
            await engine.submit("contact-us", {"email": f"lead{i}@example.com"}, metadata(ip=f"192.0.2.{i}"))
        await engine.drain()

        processed = await engine.submissions.count(SubmissionFilter(status=SubmissionStatus.PROCESSED))
        assert processed == 20
        assert engine.pool.max_active <= 2
        await engine.stop()
