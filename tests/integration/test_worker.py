"""
Integration tests for worker and reaper functionality.
"""

import asyncio
from collections.abc import Awaitable, Callable

from prometheus_client import CollectorRegistry

from jobstore.constants import JobStatus
from jobstore.reaper.main import Reaper
from jobstore.store import JobStore
from jobstore.worker.main import Worker


async def eventually(check: Callable[[], Awaitable[bool]], timeout: float = 5.0) -> bool:
    """Poll an async predicate until it holds or the timeout passes."""
    deadline = asyncio.get_running_loop().time() + timeout
    while asyncio.get_running_loop().time() < deadline:
        if await check():
            return True
        await asyncio.sleep(0.02)
    return False


class TestWorkerIntegration:
    """Integration tests for worker job processing."""

    async def test_full_job_lifecycle_success(
        self,
        store: JobStore,
        make_job,
        registry: CollectorRegistry,
    ):
        """Test complete job lifecycle: add -> reserve -> run -> done."""
        job = await store.add(make_job(name="echo", data={"message": "test"}))
        worker = Worker(store, worker_id="test-worker")

        processed = await worker.run_once()

        assert processed == 1
        finished = await store.get_by_id(job.id)
        assert finished.status == JobStatus.DONE
        assert finished.workerid is None
        assert finished.attempts == 0
        assert registry.get_sample_value(
            "jobstore_jobs_finished_total", {"status": "done"}
        ) == 1

    async def test_failing_handler_marks_failed(self, store: JobStore, make_job):
        job = await store.add(make_job(name="failing_job"))
        worker = Worker(store, worker_id="test-worker")

        await worker.run_once()

        assert (await store.get_by_id(job.id)).status == JobStatus.FAILED

    async def test_unknown_name_marks_failed(self, store: JobStore, make_job):
        """Test that a job nobody can run is failed rather than retried."""
        job = await store.add(make_job(name="nobody_handles_this"))
        worker = Worker(store, worker_id="test-worker")

        await worker.run_once()

        assert (await store.get_by_id(job.id)).status == JobStatus.FAILED

    async def test_run_once_respects_batch_size(self, store: JobStore, make_job):
        for _ in range(4):
            await store.add(make_job(name="echo"))
        worker = Worker(store, worker_id="test-worker", batch_size=3)

        assert await worker.run_once() == 3
        assert await worker.run_once() == 1
        assert await worker.run_once() == 0
        assert await store.count({"status": "done"}) == 4

    async def test_worker_loop_drains_queue(self, store: JobStore, make_job):
        """Test the polling loop end to end, including graceful stop."""
        for i in range(7):
            await store.add(make_job(name="echo", data={"i": i}))
        worker = Worker(store, worker_id="loop-worker")

        task = asyncio.create_task(worker.start())
        try:
            async def drained() -> bool:
                return await store.count({"status": "done"}) == 7

            assert await eventually(drained)
        finally:
            await worker.stop()
            await asyncio.wait_for(task, timeout=5.0)

        assert await store.count({"status": "ready"}) == 0

    async def test_heartbeat_renews_lease(self, store: JobStore, make_job):
        """Test that a long job keeps its lease alive while running."""
        job = await store.add(
            make_job(name="sleep", data={"duration_seconds": 0.4}, expirems=200)
        )
        worker = Worker(store, worker_id="slow-worker")

        task = asyncio.create_task(worker.start())
        try:
            async def running() -> bool:
                current = await store.get_by_id(job.id)
                return current.status == JobStatus.PROCESSING

            assert await eventually(running)
            first = await store.get_by_id(job.id)

            async def renewed() -> bool:
                current = await store.get_by_id(job.id)
                return current.status != JobStatus.PROCESSING or current.expires > first.expires

            assert await eventually(renewed)

            async def finished() -> bool:
                return (await store.get_by_id(job.id)).status == JobStatus.DONE

            assert await eventually(finished)
        finally:
            await worker.stop()
            await asyncio.wait_for(task, timeout=5.0)

        assert (await store.get_by_id(job.id)).attempts == 0

    async def test_worker_id_defaults(self, store: JobStore):
        first = Worker(store)
        second = Worker(store)

        assert first.worker_id
        assert first.worker_id != second.worker_id
        assert first.batch_size == store.settings.worker_batch_size


class TestReaperIntegration:
    """Integration tests for the recovery reaper."""

    async def test_run_once_counts_per_policy(self, store: JobStore, make_job, t0):
        expired = await store.add(make_job())
        stalled = await store.add(make_job())
        await store.reserve("crashed-worker")
        await store.reserve("hung-worker")
        await store.update_by_id(expired.id, {"expires": t0})
        await store.update_by_id(stalled.id, {"stalls": t0})

        counts = await Reaper(store).run_once()

        assert counts == {"expired": 1, "stalled": 1}
        assert await store.count({"status": "ready", "attempts": 1}) == 2

    async def test_run_once_on_healthy_store(self, store: JobStore, make_job):
        await store.add(make_job())
        await store.reserve("live-worker")

        assert await Reaper(store).run_once() == {"expired": 0, "stalled": 0}

    async def test_reaper_loop_recovers_crashed_worker(self, store: JobStore, make_job, t0):
        """Test that a job abandoned by a worker is picked up by another."""
        job = await store.add(make_job(name="echo"))
        await store.reserve("crashed-worker")
        await store.update_by_id(job.id, {"expires": t0})

        reaper = Reaper(store)
        worker = Worker(store, worker_id="rescue-worker")
        tasks = [
            asyncio.create_task(reaper.start()),
            asyncio.create_task(worker.start()),
        ]
        try:
            async def done() -> bool:
                return (await store.get_by_id(job.id)).status == JobStatus.DONE

            assert await eventually(done)
        finally:
            await reaper.stop()
            await worker.stop()
            await asyncio.wait_for(asyncio.gather(*tasks), timeout=5.0)

        assert (await store.get_by_id(job.id)).attempts == 1

    async def test_stale_worker_cannot_finish(self, store: JobStore, make_job, t0):
        """Test that finishing after recovery is refused without error."""
        job = await store.add(make_job(name="echo"))
        await store.reserve("slow-worker")
        await store.update_by_id(job.id, {"expires": t0})
        await Reaper(store).run_once()

        assert await store.finish(job.id, "slow-worker", JobStatus.DONE) is False
        assert (await store.get_by_id(job.id)).status == JobStatus.READY
