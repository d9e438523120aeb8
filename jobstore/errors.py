"""
Exception types raised by the job store.
"""


class JobStoreError(Exception):
    """Base error for any job store problem."""
    pass


class StoreNotOpenError(JobStoreError):
    """The store handle was used before open() succeeded or after close()."""

    def __init__(self, message: str = "Job store is not open. Call open() first."):
        super().__init__(message)


class StoreConnectionError(JobStoreError):
    """Store not reachable, or the connection dropped mid-operation."""

    def __init__(self, operation: str, cause: Exception | None = None):
        self.operation = operation
        self.cause = cause
        message = f"Store unavailable during {operation}"
        if cause:
            message += f": {cause}"
        super().__init__(message)


class DuplicateJobError(JobStoreError):
    """A job with the same id already exists."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} already exists")


class RowCountError(JobStoreError):
    """A single-row operation touched a different number of rows."""

    def __init__(self, action: str, count: int):
        self.action = action
        self.count = count
        super().__init__(f"{action} {count} jobs instead of 1")
