"""
SQLAlchemy database models.
Defines the jobs table.
"""

from datetime import datetime

from sqlalchemy import DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from jobstore.constants import (
    ID_LENGTH,
    JOBS_TABLE,
    NAME_LENGTH,
    STATUS_LENGTH,
    JobStatus,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """
    Job model representing a unit of work in the queue.

    This is the authoritative source of truth for job state.

    Key constraints:
    - id is unique; inserting a duplicate fails
    - status = processing implies workerid is set
    - status = ready implies workerid is null
    - attempts only grows, and only when a recovery scan requeues the job
    """

    __tablename__ = JOBS_TABLE

    id: Mapped[str] = mapped_column(String(ID_LENGTH), primary_key=True)

    # Owner of the current reservation
    workerid: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)

    name: Mapped[str | None] = mapped_column(String(NAME_LENGTH), nullable=True)

    created: Mapped[datetime] = mapped_column(DateTime(), nullable=False)

    # Lease deadline, pushed forward by renewals
    expires: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    expirems: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Hard stall deadline, never renewed
    stalls: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    stallms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # VARCHAR + CHECK rather than a native enum type, so concurrent
    # bootstraps never race on CREATE TYPE
    status: Mapped[JobStatus] = mapped_column(
        Enum(
            JobStatus,
            name="job_status",
            native_enum=False,
            create_constraint=True,
            length=STATUS_LENGTH,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=JobStatus.READY,
    )

    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )

    # Serialized payload, see jobstore.codec
    data: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ux_jobs_id", "id", unique=True),
        Index("ix_jobs_status", "status"),
        # Recovery scans filter on (status, deadline)
        Index("ix_jobs_status_expires", "status", "expires"),
        Index("ix_jobs_status_stalls", "status", "stalls"),
    )

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, status={self.status}, "
            f"workerid={self.workerid}, attempts={self.attempts})"
        )
