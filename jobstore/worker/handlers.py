"""
Job handlers registry and implementations.

Handlers are looked up by job name. They must be idempotent: a job whose
lease or stall deadline lapses is handed to another worker, so the same job
may run more than once.
"""

import asyncio
import logging
from typing import Awaitable, Callable

from jobstore.types.job import JobContext, JobResult

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[JobContext], Awaitable[JobResult]]

# Handler registry
_handlers: dict[str, JobHandler] = {}


def register_handler(name: str) -> Callable[[JobHandler], JobHandler]:
    """
    Decorator to register a job handler.

    Args:
        name: The job name this handler processes.

    Returns:
        Decorator function.

    Example:
        @register_handler("send_email")
        async def handle_send_email(context: JobContext) -> JobResult:
            ...
    """
    def decorator(handler: JobHandler) -> JobHandler:
        _handlers[name] = handler
        logger.debug(f"Registered handler for job name: {name}")
        return handler
    return decorator


def get_handler(name: str | None) -> JobHandler | None:
    """
    Get the handler for a job name.

    Returns:
        The handler function or None if not found.
    """
    if name is None:
        return None
    return _handlers.get(name)


def list_handlers() -> list[str]:
    """List all registered job names."""
    return list(_handlers.keys())


# ============================================================================
# Built-in job handlers
# ============================================================================


@register_handler("echo")
async def handle_echo(context: JobContext) -> JobResult:
    """Return the payload unchanged."""
    logger.info(
        "Echo job executing",
        extra={"job_id": context.job_id, "attempt": context.attempt}
    )

    return JobResult(
        success=True,
        output={"echo": context.data},
    )


@register_handler("sleep")
async def handle_sleep(context: JobContext) -> JobResult:
    """
    Sleep handler for exercising leases.

    Payload may contain:
    - duration_seconds: How long to sleep
    """
    data = context.data if isinstance(context.data, dict) else {}
    duration = data.get("duration_seconds", 1)

    await asyncio.sleep(duration)

    return JobResult(
        success=True,
        output={"slept_for": duration},
    )


@register_handler("failing_job")
async def handle_failing_job(context: JobContext) -> JobResult:
    """Handler that always fails."""
    return JobResult(
        success=False,
        error=f"Intentional failure on attempt {context.attempt}",
    )


async def execute_job(context: JobContext) -> JobResult:
    """
    Execute a job using the handler registered for its name.

    Args:
        context: The job context.

    Returns:
        JobResult from the handler; failures and missing handlers become
        unsuccessful results rather than exceptions.
    """
    handler = get_handler(context.name)

    if handler is None:
        logger.error(
            f"No handler for job name: {context.name}",
            extra={"job_id": context.job_id}
        )
        return JobResult(
            success=False,
            error=f"No handler registered for job name: {context.name}",
        )

    try:
        return await handler(context)
    except Exception as e:
        logger.exception(
            "Handler raised exception",
            extra={"job_id": context.job_id, "error": str(e)}
        )
        return JobResult(
            success=False,
            error=f"Handler exception: {e}",
        )
