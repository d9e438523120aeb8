"""
Job store facade.

JobStore is the handle applications hold: it owns the database lifecycle,
reports open/close/error events to listeners, applies the payload codec and
turns low-level driver failures into store errors.
"""

import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

from jobstore.codec import Serializer
from jobstore.config import Settings, get_settings
from jobstore.constants import SPAN_REQUEUE, SPAN_RESERVE, JobStatus
from jobstore.db.connection import Database
from jobstore.db.models import Job
from jobstore.db.recovery import LEASE_EXPIRY, STALL, RecoveryPolicy
from jobstore.db.repository import JobRepository
from jobstore.db.schema import init_schema
from jobstore.errors import StoreConnectionError
from jobstore.observability.metrics import MetricsCollector, get_metrics
from jobstore.observability.tracing import get_tracer, instrument_sqlalchemy
from jobstore.types.events import EventListener, StoreEvent
from jobstore.types.job import JobQuery, JobRecord, JobUpdate, validate_worker_id

logger = logging.getLogger(__name__)


def _is_connectivity_error(exc: BaseException) -> bool:
    if isinstance(exc, (OperationalError, InterfaceError, OSError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


def _to_record(job: Job) -> JobRecord:
    record = JobRecord.model_validate(job)
    return record.model_copy(update={"data": Serializer.unpack(job.data)})


def _as_query(query: JobQuery | dict[str, Any] | None) -> JobQuery | None:
    if query is None or isinstance(query, JobQuery):
        return query
    return JobQuery.model_validate(query)


class JobStore:
    """
    Durable job store backed by one relational table.

    Lifecycle:
    - open() connects and bootstraps the schema, then emits OPEN
    - close() disposes connections, then emits CLOSE
    Failures in either are emitted as CLOSE events carrying the error,
    never raised, since no caller is waiting on them.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the store. Nothing connects until open().

        Args:
            settings: Store settings; defaults to the environment settings.
            metrics: Metrics collector; defaults to the global collector.
        """
        self._settings = settings or get_settings()
        self._metrics = metrics or get_metrics()
        self._db = Database(self._settings)
        self._listeners: list[EventListener] = []

        logger.debug("Job store created")

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def database(self) -> Database:
        return self._db

    @property
    def is_open(self) -> bool:
        return self._db.is_open

    def add_listener(self, listener: EventListener) -> None:
        """Subscribe to open/close/error events."""
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        self._listeners.remove(listener)

    def _emit(self, event: StoreEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Store event listener failed",
                    extra={"event": event.kind.value},
                )

    async def open(self) -> None:
        """Connect, bootstrap the schema and emit OPEN (or CLOSE on failure)."""
        try:
            engine = self._db.open()
            await init_schema(engine)
            if self._settings.otel_enabled:
                instrument_sqlalchemy(engine.sync_engine)
        except Exception as e:
            logger.error("Could not open job store", extra={"error": str(e)})
            try:
                await self._db.close(force=True)
            except Exception:
                logger.exception("Error releasing engine after failed open")
            self._emit(StoreEvent.closed(e))
            return

        logger.info("Job store opened")
        self._emit(StoreEvent.opened())

    async def close(self, force: bool = False) -> None:
        """Dispose connections and emit CLOSE."""
        logger.warning(f"Closing job store - {'forced' if force else 'graceful'}")

        try:
            await self._db.close(force=force)
        except Exception as e:
            logger.error("Error closing job store", extra={"error": str(e)})
            self._emit(StoreEvent.closed(e))
            return

        logger.debug("Job store closed")
        self._emit(StoreEvent.closed())

    @asynccontextmanager
    async def _repository(self, operation: str) -> AsyncGenerator[JobRepository]:
        """
        Repository bound to one transaction.

        Raises:
            StoreNotOpenError: If the store is not open.
            StoreConnectionError: If the database could not be reached.
        """
        try:
            async with self._db.session() as session:
                yield JobRepository(session)
        except Exception as e:
            if not _is_connectivity_error(e):
                raise
            logger.error(
                "Store connection error",
                extra={"operation": operation, "error": str(e)},
            )
            self._emit(StoreEvent.failed(e))
            raise StoreConnectionError(operation, e) from e

    async def add(self, job: JobRecord) -> JobRecord:
        """
        Insert a new job.

        Missing lease and stall durations are filled from the settings.

        Returns:
            The record as stored.

        Raises:
            DuplicateJobError: If the id is taken.
        """
        defaults: dict[str, Any] = {}
        if job.expirems is None and self._settings.default_lease_ms:
            defaults["expirems"] = self._settings.default_lease_ms
        if job.stallms is None and self._settings.default_stall_ms:
            defaults["stallms"] = self._settings.default_stall_ms
        if defaults:
            job = job.model_copy(update=defaults)

        logger.debug(f"Add job {job.id}")

        values = job.model_dump()
        values["data"] = Serializer.pack(job.data)

        async with self._repository("add") as repo:
            await repo.add(values)

        self._metrics.record_job_added()
        return job

    async def get_by_id(self, job_id: str) -> JobRecord | None:
        async with self._repository("get_by_id") as repo:
            job = await repo.get_by_id(job_id)
        return _to_record(job) if job is not None else None

    async def get(
        self,
        query: JobQuery | dict[str, Any] | None = None,
    ) -> list[JobRecord]:
        """Jobs matching every field set on the query."""
        async with self._repository("get") as repo:
            jobs = await repo.get(_as_query(query))
        return [_to_record(job) for job in jobs]

    async def count(self, query: JobQuery | dict[str, Any] | None = None) -> int:
        async with self._repository("count") as repo:
            return await repo.count(_as_query(query))

    async def stats(self) -> dict[str, int]:
        """Job counts per status; also refreshes the queue depth gauge."""
        async with self._repository("stats") as repo:
            stats = await repo.get_job_stats()
        for status, depth in stats.items():
            self._metrics.update_queue_depth(status, depth)
        return stats

    async def update_by_id(
        self,
        job_id: str,
        update: JobUpdate | dict[str, Any],
    ) -> None:
        """
        Update one job.

        Raises:
            ValidationError: If the update names a field outside the updatable set.
            RowCountError: If the job does not exist.
        """
        if not isinstance(update, JobUpdate):
            update = JobUpdate.model_validate(update)

        values = update.values()
        if "data" in values:
            values["data"] = Serializer.pack(values["data"])

        logger.debug("Update job", extra={"job_id": job_id, "fields": sorted(values)})

        async with self._repository("update_by_id") as repo:
            await repo.update_by_id(job_id, values)

    async def remove_by_id(self, job_id: str) -> bool:
        """
        Delete one job.

        Raises:
            RowCountError: If the job does not exist.
        """
        async with self._repository("remove_by_id") as repo:
            removed = await repo.remove_by_id(job_id)
        self._metrics.record_removed(1)
        return removed

    async def remove(self, query: JobQuery | dict[str, Any] | None = None) -> int:
        async with self._repository("remove") as repo:
            count = await repo.remove(_as_query(query))
        self._metrics.record_removed(count)
        return count

    async def remove_by_status(self, status: JobStatus | str) -> int:
        async with self._repository("remove_by_status") as repo:
            count = await repo.remove_by_status(JobStatus(status))
        self._metrics.record_removed(count)
        return count

    async def clear(self) -> int:
        async with self._repository("clear") as repo:
            count = await repo.clear()
        self._metrics.record_removed(count)
        return count

    async def reserve(self, worker_id: str) -> JobRecord | None:
        """
        Claim one ready job for a worker.

        Returns:
            The job, now PROCESSING and owned by worker_id, or None if no job
            is ready.

        Raises:
            ValidationError: If worker_id does not fit the workerid column.
            StoreConnectionError: If the store could not be asked.
        """
        validate_worker_id(worker_id)

        with get_tracer().start_as_current_span(SPAN_RESERVE) as span:
            span.set_attribute("worker_id", worker_id)
            start = time.perf_counter()

            async with self._repository("reserve") as repo:
                job = await repo.reserve(worker_id)

            if job is None:
                return None

            span.set_attribute("job_id", job.id)
            self._metrics.record_job_reserved(worker_id, time.perf_counter() - start)
            return _to_record(job)

    async def finish(
        self,
        job_id: str,
        worker_id: str,
        status: JobStatus | str,
    ) -> bool:
        """Mark an owned job DONE or FAILED; False if recovery took it back."""
        async with self._repository("finish") as repo:
            return await repo.finish(job_id, worker_id, JobStatus(status))

    async def renew_lease(self, job_id: str, worker_id: str) -> bool:
        """Push the lease deadline forward for a job the worker still owns."""
        async with self._repository("renew_lease") as repo:
            return await repo.renew_lease(job_id, worker_id)

    async def requeue_overdue(self, policy: RecoveryPolicy) -> int:
        """Run one recovery scan and return the number of requeued jobs."""
        with get_tracer().start_as_current_span(SPAN_REQUEUE) as span:
            span.set_attribute("policy", policy.name)

            async with self._repository(f"refresh_{policy.name}") as repo:
                count = await repo.requeue_overdue(policy)

            span.set_attribute("count", count)
            self._metrics.record_requeued(policy.name, count)
            return count

    async def refresh_expired(self) -> int:
        """Requeue processing jobs whose lease expired."""
        return await self.requeue_overdue(LEASE_EXPIRY)

    async def refresh_stalled(self) -> int:
        """Requeue processing jobs past their stall deadline."""
        return await self.requeue_overdue(STALL)
