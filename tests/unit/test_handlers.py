"""
Unit tests for job handlers.
"""

from datetime import timedelta

import pytest

from jobstore.types.job import JobContext, JobRecord, JobResult, utcnow
from jobstore.worker.handlers import (
    execute_job,
    get_handler,
    handle_echo,
    handle_failing_job,
    list_handlers,
    register_handler,
)


class TestJobHandlers:
    """Tests for job handlers."""

    @pytest.fixture
    def job_context(self) -> JobContext:
        """Create a test job context."""
        return JobContext(
            job_id="job-1",
            name="echo",
            attempt=0,
            data={"message": "test"},
            worker_id="test-worker",
            expires=utcnow() + timedelta(seconds=30),
        )

    def test_list_handlers(self):
        """Test listing registered handlers."""
        handlers = list_handlers()

        assert "echo" in handlers
        assert "sleep" in handlers
        assert "failing_job" in handlers

    def test_get_handler_exists(self):
        """Test getting an existing handler."""
        handler = get_handler("echo")
        assert handler is not None
        assert handler == handle_echo

    def test_get_handler_not_exists(self):
        """Test getting a non-existent handler."""
        assert get_handler("nonexistent") is None
        assert get_handler(None) is None

    async def test_echo_handler(self, job_context: JobContext):
        """Test the echo handler."""
        result = await handle_echo(job_context)

        assert result.success is True
        assert result.output == {"echo": {"message": "test"}}

    async def test_failing_handler(self, job_context: JobContext):
        """Test the failing job handler."""
        result = await handle_failing_job(job_context)

        assert result.success is False
        assert "Intentional failure" in result.error

    async def test_sleep_handler(self, job_context: JobContext):
        job_context.name = "sleep"
        job_context.data = {"duration_seconds": 0}

        result = await execute_job(job_context)

        assert result.success is True
        assert result.output == {"slept_for": 0}

    async def test_execute_job_with_valid_name(self, job_context: JobContext):
        """Test execute_job with a registered job name."""
        result = await execute_job(job_context)

        assert result.success is True

    async def test_execute_job_with_unknown_name(self, job_context: JobContext):
        """Test execute_job with an unregistered job name."""
        job_context.name = "nonexistent_handler"

        result = await execute_job(job_context)

        assert result.success is False
        assert "No handler registered" in result.error

    async def test_execute_job_without_name(self, job_context: JobContext):
        job_context.name = None

        result = await execute_job(job_context)

        assert result.success is False

    async def test_execute_job_handler_raises(self, job_context: JobContext):
        """Test that a raising handler becomes a failed result."""

        @register_handler("test_raises")
        async def handle_raises(context: JobContext) -> JobResult:
            raise RuntimeError("boom")

        job_context.name = "test_raises"

        result = await execute_job(job_context)

        assert result.success is False
        assert "boom" in result.error


class TestJobContext:
    """Tests for JobContext."""

    def test_from_record(self):
        """Test building a handler context from a reserved job."""
        expires = utcnow()
        job = JobRecord(
            id="abc",
            name="echo",
            attempts=2,
            data=[1, 2, 3],
            workerid="worker-a",
            expires=expires,
        )

        context = JobContext.from_record(job, "worker-a")

        assert context.job_id == "abc"
        assert context.name == "echo"
        assert context.attempt == 2
        assert context.data == [1, 2, 3]
        assert context.worker_id == "worker-a"
        assert context.expires == expires
