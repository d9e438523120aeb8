"""
Database module.
Contains the connection handle, models, schema bootstrap and repository.
"""

from jobstore.db.connection import Database, create_engine_for
from jobstore.db.models import Base, Job
from jobstore.db.recovery import LEASE_EXPIRY, POLICIES, STALL, RecoveryPolicy
from jobstore.db.repository import JobRepository
from jobstore.db.schema import init_schema

__all__ = [
    "Database",
    "create_engine_for",
    "init_schema",
    "JobRepository",
    "RecoveryPolicy",
    "LEASE_EXPIRY",
    "STALL",
    "POLICIES",
    "Job",
    "Base",
]
