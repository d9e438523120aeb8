"""
Worker process for executing jobs.

The worker reserves jobs from the store, runs the handler registered for each
job's name and marks the job done or failed. Jobs it never finishes (crash,
hang) are returned to the pool by the reaper, not by the worker.
"""

import asyncio
import logging
import signal
import time
from uuid import uuid4

from jobstore.constants import SPAN_EXECUTE_JOB, JobStatus
from jobstore.observability.logging import log_context, setup_logging
from jobstore.observability.metrics import setup_metrics
from jobstore.observability.tracing import get_tracer, setup_tracing
from jobstore.store import JobStore
from jobstore.types.job import JobContext, JobRecord
from jobstore.worker.handlers import execute_job

logger = logging.getLogger(__name__)


class Worker:
    """
    Job worker that polls for and executes jobs.

    Features:
    - Atomic reservation through the store, safe across processes
    - Heartbeat to renew leases for long-running jobs
    - Graceful shutdown on SIGTERM/SIGINT
    """

    def __init__(
        self,
        store: JobStore,
        worker_id: str | None = None,
        batch_size: int | None = None,
        poll_interval: float | None = None,
    ):
        """
        Initialize the worker.

        Args:
            store: An open job store.
            worker_id: Unique worker identifier. Defaults to a fresh uuid.
            batch_size: Maximum number of jobs reserved per poll.
            poll_interval: Seconds between polls when no job is ready.
        """
        settings = store.settings

        self._store = store
        self.worker_id = worker_id or settings.worker_id or str(uuid4())
        self.batch_size = batch_size or settings.worker_batch_size
        self.poll_interval = poll_interval or settings.worker_poll_interval_seconds
        self.heartbeat_interval = settings.worker_heartbeat_interval_seconds

        self._running = False
        self._current_jobs: dict[str, asyncio.Task] = {}
        self._heartbeat_task: asyncio.Task | None = None
        self._metrics = store.metrics

    async def start(self) -> None:
        """Start the worker."""
        logger.info(
            "Worker starting",
            extra={"worker_id": self.worker_id, "batch_size": self.batch_size}
        )

        self._running = True
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

        while self._running:
            try:
                jobs_processed = await self.run_once()

                if jobs_processed == 0:
                    await asyncio.sleep(self.poll_interval)

            except Exception as e:
                logger.exception(
                    f"Error in worker loop: {e}",
                    extra={"worker_id": self.worker_id}
                )
                await asyncio.sleep(self.poll_interval)

        if self._current_jobs:
            logger.info(f"Waiting for {len(self._current_jobs)} jobs to complete")
            await asyncio.gather(*self._current_jobs.values(), return_exceptions=True)

        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass

        logger.info("Worker stopped", extra={"worker_id": self.worker_id})

    async def stop(self) -> None:
        """Stop the worker gracefully."""
        logger.info("Worker stopping", extra={"worker_id": self.worker_id})
        self._running = False

    async def run_once(self) -> int:
        """
        Reserve up to batch_size jobs and execute them.

        Returns:
            Number of jobs processed.
        """
        jobs: list[JobRecord] = []
        while len(jobs) < self.batch_size:
            job = await self._store.reserve(self.worker_id)
            if job is None:
                break
            jobs.append(job)

        if not jobs:
            return 0

        logger.info(
            f"Reserved {len(jobs)} jobs",
            extra={"worker_id": self.worker_id}
        )

        tasks = []
        for job in jobs:
            task = asyncio.create_task(self._execute_job(job))
            self._current_jobs[job.id] = task
            tasks.append(task)

        await asyncio.gather(*tasks, return_exceptions=True)

        return len(jobs)

    async def _execute_job(self, job: JobRecord) -> None:
        """
        Execute a single job and record its outcome.

        Args:
            job: A job reserved by this worker.
        """
        start_time = time.monotonic()
        context = JobContext.from_record(job, self.worker_id)

        try:
            logger.info(
                "Executing job",
                extra={"job_id": job.id, "name": job.name, "attempt": job.attempts}
            )

            with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
                span.set_attribute("job_id", job.id)
                span.set_attribute("attempt", job.attempts)
                if job.name:
                    span.set_attribute("job_name", job.name)

                result = await execute_job(context)

            status = JobStatus.DONE if result.success else JobStatus.FAILED
            if not result.success:
                logger.warning(
                    "Job failed",
                    extra={"job_id": job.id, "error": result.error}
                )

            finished = await self._store.finish(job.id, self.worker_id, status)
            if finished:
                self._metrics.record_job_finished(
                    status.value, time.monotonic() - start_time
                )

        except Exception as e:
            logger.exception(
                "Exception executing job",
                extra={"job_id": job.id, "error": str(e)}
            )

        finally:
            self._current_jobs.pop(job.id, None)

    async def _heartbeat_loop(self) -> None:
        """
        Periodically renew leases on running jobs.

        This keeps the lease scan away from jobs that are still being
        executed. The stall deadline is not renewed.
        """
        while self._running:
            try:
                await asyncio.sleep(self.heartbeat_interval)

                for job_id in list(self._current_jobs.keys()):
                    renewed = await self._store.renew_lease(job_id, self.worker_id)
                    if renewed:
                        logger.debug("Renewed lease", extra={"job_id": job_id})

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Error in heartbeat loop: {e}")


async def run_async() -> None:
    """Run the worker asynchronously."""
    store = JobStore()
    settings = store.settings

    setup_logging(settings)
    setup_metrics(settings.prometheus_port)
    if settings.otel_enabled:
        setup_tracing(settings)

    await store.open()
    if not store.is_open:
        logger.error("Worker exiting: job store did not open")
        return

    worker = Worker(store)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(worker.stop())
        )

    try:
        with log_context(component="worker", worker_id=worker.worker_id):
            await worker.start()
    finally:
        await store.close()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
