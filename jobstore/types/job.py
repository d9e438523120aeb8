"""
Job-related type definitions.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Annotated, Any
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    TypeAdapter,
    field_validator,
)

from jobstore.constants import ID_LENGTH, NAME_LENGTH, JobStatus

# Column widths of jobs.workerid and jobs.name
WorkerId = Annotated[str, StringConstraints(min_length=1, max_length=ID_LENGTH)]
JobName = Annotated[str, StringConstraints(max_length=NAME_LENGTH)]

_worker_id_adapter: TypeAdapter[str] = TypeAdapter(WorkerId)


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, the form stored in the jobs table."""
    return datetime.now(UTC).replace(tzinfo=None)


def new_job_id() -> str:
    return str(uuid4())


def validate_worker_id(worker_id: str) -> str:
    """Reject worker ids that do not fit the workerid column."""
    return _worker_id_adapter.validate_python(worker_id)


class JobRecord(BaseModel):
    """
    A job as seen by callers of the store.

    ``data`` holds the decoded payload; the store encodes it on the way in
    and decodes it on the way out.
    """

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=new_job_id, max_length=36)
    workerid: WorkerId | None = None
    name: JobName | None = None
    created: datetime = Field(default_factory=utcnow)
    expires: datetime | None = None
    expirems: int | None = None
    stalls: datetime | None = None
    stallms: int | None = None
    status: JobStatus = JobStatus.READY
    attempts: int = 0
    data: Any = None


class JobUpdate(BaseModel):
    """
    Partial update applied by update_by_id.

    Only fields that were explicitly set are written, so passing ``None``
    clears a column while omitting a field leaves it untouched.
    ``id`` and ``created`` are immutable and not part of this set.
    """

    model_config = ConfigDict(extra="forbid")

    workerid: WorkerId | None = None
    name: JobName | None = None
    expires: datetime | None = None
    expirems: int | None = None
    stalls: datetime | None = None
    stallms: int | None = None
    status: JobStatus | None = None
    attempts: int | None = None
    data: Any = None

    @field_validator("status", "attempts")
    @classmethod
    def not_null(cls, value: Any) -> Any:
        # Both columns are NOT NULL; omit the field instead of clearing it
        if value is None:
            raise ValueError("column cannot be cleared")
        return value

    def values(self) -> dict[str, Any]:
        """Column values to write."""
        return self.model_dump(exclude_unset=True)


class JobQuery(BaseModel):
    """Equality filter; every set field must match."""

    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    workerid: WorkerId | None = None
    name: JobName | None = None
    created: datetime | None = None
    expires: datetime | None = None
    expirems: int | None = None
    stalls: datetime | None = None
    stallms: int | None = None
    status: JobStatus | None = None
    attempts: int | None = None

    def criteria(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class JobResult(BaseModel):
    """
    Result of job execution.
    Returned by job handlers after processing.
    """

    success: bool
    output: Any = None
    error: str | None = None


@dataclass
class JobContext:
    """
    Context passed to job handlers during execution.
    """

    job_id: str
    name: str | None
    attempt: int
    data: Any
    worker_id: str
    expires: datetime | None

    @classmethod
    def from_record(cls, job: JobRecord, worker_id: str) -> "JobContext":
        return cls(
            job_id=job.id,
            name=job.name,
            attempt=job.attempts,
            data=job.data,
            worker_id=worker_id,
            expires=job.expires,
        )
