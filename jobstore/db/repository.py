"""
Job repository for database operations.
Implements the core data access patterns for the job store.
"""

import logging
from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import (
    DateTime,
    bindparam,
    case,
    delete,
    func,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from jobstore.constants import CLAIM_ROUTINE, JobStatus
from jobstore.db.expressions import add_millis
from jobstore.db.models import Job
from jobstore.db.recovery import LEASE_EXPIRY, STALL, RecoveryPolicy
from jobstore.errors import DuplicateJobError, RowCountError
from jobstore.types.job import JobQuery, utcnow

logger = logging.getLogger(__name__)

# Columns callers may write after insert; id and created are immutable
UPDATABLE_COLUMNS = frozenset(
    {
        "workerid",
        "name",
        "expires",
        "expirems",
        "stalls",
        "stallms",
        "status",
        "attempts",
        "data",
    }
)

_CLAIM_SQL = text(f"SELECT * FROM {CLAIM_ROUTINE}(:workerid, :now)").bindparams(
    bindparam("now", type_=DateTime())
)


def _job_from_row(row: Any) -> Job:
    """Build a detached Job from a raw result row."""
    return Job(
        id=row.id,
        workerid=row.workerid,
        name=row.name,
        created=row.created,
        expires=row.expires,
        expirems=row.expirems,
        stalls=row.stalls,
        stallms=row.stallms,
        status=JobStatus(row.status),
        attempts=row.attempts,
        data=row.data,
    )


def _filters(query: JobQuery | None) -> list[Any]:
    if query is None:
        return []
    columns = Job.__table__.c
    return [columns[key] == value for key, value in query.criteria().items()]


class JobRepository:
    """
    Repository for job database operations.

    Implements atomic operations for:
    - Job reservation (one ready row to one worker, never twice)
    - Lease expiry and stall recovery as single bulk updates
    - Plain CRUD with exact row-count checks on single-row writes
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    @property
    def _dialect(self) -> str:
        return self._session.bind.dialect.name

    async def add(self, values: dict[str, Any]) -> None:
        """
        Insert a new job row.

        Args:
            values: Column values; ``data`` must already be serialized.

        Raises:
            DuplicateJobError: If a job with the same id exists.
        """
        unknown = set(values) - set(Job.__table__.c.keys())
        if unknown:
            raise ValueError(f"Unknown job columns: {sorted(unknown)}")

        try:
            await self._session.execute(insert(Job).values(**values))
        except IntegrityError as e:
            raise DuplicateJobError(values["id"]) from e

        logger.debug("Added job", extra={"job_id": values["id"]})

    async def get_by_id(self, job_id: str) -> Job | None:
        """
        Get a job by ID.

        Args:
            job_id: The job id.

        Returns:
            The Job or None if not found.
        """
        stmt = (
            select(Job)
            .where(Job.id == job_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, query: JobQuery | None = None) -> Sequence[Job]:
        """
        Get all jobs matching every field set on the query.

        Args:
            query: Equality filter; None or an empty query matches all jobs.

        Returns:
            Matching jobs in reservation order.
        """
        stmt = (
            select(Job)
            .where(*_filters(query))
            .order_by(Job.created, Job.id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def count(self, query: JobQuery | None = None) -> int:
        stmt = select(func.count()).select_from(Job).where(*_filters(query))
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def get_job_stats(self) -> dict[str, int]:
        """
        Get job counts by status.

        Returns:
            Dictionary of status -> count, one entry per status.
        """
        stmt = select(Job.status, func.count()).group_by(Job.status)
        result = await self._session.execute(stmt)
        stats = {status.value: 0 for status in JobStatus}
        for status, count in result.all():
            stats[JobStatus(status).value] = count
        return stats

    async def update_by_id(self, job_id: str, values: dict[str, Any]) -> None:
        """
        Update one job.

        Args:
            job_id: The job id.
            values: Columns to write, restricted to UPDATABLE_COLUMNS.

        Raises:
            ValueError: If values is empty or names a column outside the set.
            RowCountError: If no job (or more than one) was updated.
        """
        if not values:
            raise ValueError("No values to update")

        unknown = set(values) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Columns not updatable: {sorted(unknown)}")

        stmt = (
            update(Job)
            .where(Job.id == job_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)

        if result.rowcount != 1:
            raise RowCountError("updated", result.rowcount or 0)

    async def remove_by_id(self, job_id: str) -> bool:
        """
        Delete one job.

        Raises:
            RowCountError: If no job was deleted.
        """
        stmt = (
            delete(Job)
            .where(Job.id == job_id)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)

        if result.rowcount != 1:
            raise RowCountError("deleted", result.rowcount or 0)

        return True

    async def remove(self, query: JobQuery | None = None) -> int:
        stmt = (
            delete(Job)
            .where(*_filters(query))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount or 0

    async def remove_by_status(self, status: JobStatus) -> int:
        logger.debug("Removing jobs by status", extra={"status": str(status)})
        return await self.remove(JobQuery(status=status))

    async def clear(self) -> int:
        return await self.remove()

    async def reserve(
        self,
        worker_id: str,
        now: datetime | None = None,
    ) -> Job | None:
        """
        Atomically claim one ready job for a worker.

        Selection and the flip to PROCESSING happen in one store-side
        operation, so concurrent callers in any number of processes never
        receive the same job. PostgreSQL runs the claim routine installed by
        init_schema; other dialects run one conditional UPDATE ... RETURNING.

        Args:
            worker_id: The worker identifier.
            now: Reference time for the new lease and stall deadlines.

        Returns:
            The claimed Job, or None if no job is ready.
        """
        now = now or utcnow()

        if self._dialect == "postgresql":
            result = await self._session.execute(
                _CLAIM_SQL, {"workerid": worker_id, "now": now}
            )
            row = result.first()
            job = _job_from_row(row) if row is not None else None
        else:
            candidate = (
                select(Job.id)
                .where(Job.status == JobStatus.READY)
                .order_by(Job.created, Job.id)
                .limit(1)
                .correlate(None)
                .scalar_subquery()
            )
            stmt = (
                update(Job)
                .where(Job.id == candidate, Job.status == JobStatus.READY)
                .values(
                    status=JobStatus.PROCESSING,
                    workerid=worker_id,
                    expires=case(
                        (Job.expirems.is_(None), Job.expires),
                        else_=add_millis(now, Job.expirems),
                    ),
                    stalls=case(
                        (Job.stallms.is_(None), Job.stalls),
                        else_=add_millis(now, Job.stallms),
                    ),
                )
                .returning(Job)
                .execution_options(
                    synchronize_session=False,
                    populate_existing=True,
                )
            )
            result = await self._session.execute(stmt)
            job = result.scalar_one_or_none()

        if job is not None:
            logger.info(
                "Reserved job",
                extra={"job_id": job.id, "worker_id": worker_id},
            )

        return job

    async def requeue_overdue(
        self,
        policy: RecoveryPolicy,
        now: datetime | None = None,
    ) -> int:
        """
        Return processing jobs whose deadline has passed to the pool.

        One bulk UPDATE; the status and deadline predicate is re-evaluated by
        the store at write time, so a row claimed again in the meantime is
        never clobbered.

        Args:
            policy: Which deadline to check.
            now: Reference time.

        Returns:
            Number of requeued jobs.
        """
        now = now or utcnow()

        stmt = (
            update(Job)
            .where(policy.overdue(now))
            .values(policy.requeue_values(now))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        count = result.rowcount or 0

        if count > 0:
            logger.info(
                f"Requeued {count} {policy.name} jobs",
                extra={"policy": policy.name, "count": count},
            )

        return count

    async def refresh_expired(self, now: datetime | None = None) -> int:
        """Requeue jobs whose lease expired."""
        return await self.requeue_overdue(LEASE_EXPIRY, now)

    async def refresh_stalled(self, now: datetime | None = None) -> int:
        """Requeue jobs past their stall deadline."""
        return await self.requeue_overdue(STALL, now)

    async def finish(
        self,
        job_id: str,
        worker_id: str,
        status: JobStatus,
    ) -> bool:
        """
        Move a job the worker still owns to a terminal status.

        Args:
            job_id: The job id.
            worker_id: The worker identifier.
            status: DONE or FAILED.

        Returns:
            True if the job was finished; False if the worker lost it to recovery.
        """
        if status not in (JobStatus.DONE, JobStatus.FAILED):
            raise ValueError(f"Not a terminal status: {status}")

        stmt = (
            update(Job)
            .where(
                Job.id == job_id,
                Job.workerid == worker_id,
                Job.status == JobStatus.PROCESSING,
            )
            .values(status=status, workerid=None)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        finished = (result.rowcount or 0) > 0

        if finished:
            logger.info(
                "Job finished",
                extra={"job_id": job_id, "status": status.value},
            )
        else:
            logger.warning(
                "Worker no longer owns job",
                extra={"job_id": job_id, "worker_id": worker_id},
            )

        return finished

    async def renew_lease(
        self,
        job_id: str,
        worker_id: str,
        now: datetime | None = None,
    ) -> bool:
        """
        Extend the lease on a job (heartbeat).

        Only the lease moves; the stall deadline stays where reservation put it.

        Args:
            job_id: The job id.
            worker_id: The worker identifier; must still own the job.
            now: Reference time.

        Returns:
            True if the lease was extended, False otherwise.
        """
        now = now or utcnow()

        stmt = (
            update(Job)
            .where(
                Job.id == job_id,
                Job.workerid == worker_id,
                Job.status == JobStatus.PROCESSING,
                Job.expirems.is_not(None),
            )
            .values(expires=add_millis(now, Job.expirems))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return (result.rowcount or 0) > 0
