"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - READY -> PROCESSING (reservation)
    - PROCESSING -> READY (lease expiry or stall recovery)
    - PROCESSING -> DONE / FAILED (set by the owning worker)
    """

    READY = "ready"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


class StoreEventKind(StrEnum):
    """Lifecycle events reported to store listeners."""

    OPEN = "open"
    CLOSE = "close"
    ERROR = "error"


# Table and server-side routine names
JOBS_TABLE = "jobs"
CLAIM_ROUTINE = "atomic_find_ready"

# Column sizes
ID_LENGTH = 36
NAME_LENGTH = 100
STATUS_LENGTH = 16

# Recovery policy names
POLICY_LEASE_EXPIRY = "expired"
POLICY_STALL = "stalled"

# Metrics names
METRIC_QUEUE_DEPTH = "jobstore_queue_depth"
METRIC_JOBS_ADDED = "jobstore_jobs_added_total"
METRIC_JOBS_RESERVED = "jobstore_jobs_reserved_total"
METRIC_RESERVE_LATENCY = "jobstore_reserve_latency_seconds"
METRIC_JOBS_REQUEUED = "jobstore_jobs_requeued_total"
METRIC_JOBS_REMOVED = "jobstore_jobs_removed_total"
METRIC_JOBS_FINISHED = "jobstore_jobs_finished_total"
METRIC_JOB_DURATION = "jobstore_job_duration_seconds"

# Trace span names
SPAN_RESERVE = "reserve_job"
SPAN_REQUEUE = "requeue_overdue"
SPAN_EXECUTE_JOB = "execute_job"
