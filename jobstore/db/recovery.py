"""
Recovery policies for jobs stuck in processing.

A job carries two independent timers: the lease (``expires``/``expirems``),
which a live worker keeps pushing forward, and the stall deadline
(``stalls``/``stallms``), which nothing renews. Each timer gets its own
policy so the two recovery scans stay symmetric and can run on separate
schedules.
"""

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import ColumnElement
from sqlalchemy.orm import InstrumentedAttribute

from jobstore.constants import POLICY_LEASE_EXPIRY, POLICY_STALL, JobStatus
from jobstore.db.expressions import add_millis
from jobstore.db.models import Job


@dataclass(frozen=True, eq=False)
class RecoveryPolicy:
    """
    One deadline timer on the jobs table.

    Attributes:
        name: Label used in logs and metrics.
        deadline: Column holding the deadline timestamp.
        duration: Column holding the timer length in milliseconds.
    """

    name: str
    deadline: InstrumentedAttribute
    duration: InstrumentedAttribute

    def overdue(self, now: datetime) -> ColumnElement[bool]:
        """Rows still processing whose deadline has passed."""
        return (Job.status == JobStatus.PROCESSING) & (self.deadline <= now)

    def requeue_values(self, now: datetime) -> dict:
        """Column values that return an overdue job to the pool."""
        return {
            Job.status: JobStatus.READY,
            Job.workerid: None,
            Job.attempts: Job.attempts + 1,
            self.deadline: add_millis(now, self.duration),
        }


LEASE_EXPIRY = RecoveryPolicy(
    name=POLICY_LEASE_EXPIRY,
    deadline=Job.expires,
    duration=Job.expirems,
)

STALL = RecoveryPolicy(
    name=POLICY_STALL,
    deadline=Job.stalls,
    duration=Job.stallms,
)

POLICIES: tuple[RecoveryPolicy, ...] = (LEASE_EXPIRY, STALL)
