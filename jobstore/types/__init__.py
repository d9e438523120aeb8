"""
Type definitions for the job store.
Contains input/output type definitions grouped by module.
"""

from jobstore.types.events import (
    EventListener,
    StoreEvent,
)
from jobstore.types.job import (
    JobContext,
    JobQuery,
    JobRecord,
    JobResult,
    JobUpdate,
    utcnow,
)

__all__ = [
    # Job types
    "JobRecord",
    "JobUpdate",
    "JobQuery",
    "JobContext",
    "JobResult",
    "utcnow",
    # Event types
    "StoreEvent",
    "EventListener",
]
