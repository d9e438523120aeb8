"""
Schema bootstrap.

Creates the jobs table, its indexes and, on PostgreSQL, the server-side
claim routine used by JobRepository.reserve. Safe to run from several
processes at once and on every start.
"""

import logging

from sqlalchemy import Index, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.schema import CreateIndex, CreateTable

from jobstore.constants import CLAIM_ROUTINE, JOBS_TABLE
from jobstore.db.models import Job

logger = logging.getLogger(__name__)

# duplicate_table, duplicate_object, duplicate_function, unique_violation
_DUPLICATE_SQLSTATES = frozenset({"42P07", "42710", "42723", "23505"})

# Serializes routine replacement across concurrent bootstraps
LOCK_CLAIM_ROUTINE = f"SELECT pg_advisory_xact_lock(hashtext('{CLAIM_ROUTINE}'))"

DROP_CLAIM_ROUTINE = f"DROP FUNCTION IF EXISTS {CLAIM_ROUTINE}"

# Picks the oldest ready row, skipping rows another transaction has locked,
# and flips it to processing in the same transaction.
CREATE_CLAIM_ROUTINE = f"""
CREATE FUNCTION {CLAIM_ROUTINE}(p_workerid VARCHAR, p_now TIMESTAMP)
RETURNS SETOF {JOBS_TABLE}
LANGUAGE plpgsql
AS $$
DECLARE
    j_id VARCHAR;
BEGIN
    SELECT id INTO j_id
    FROM {JOBS_TABLE}
    WHERE status = 'ready'
    ORDER BY created, id
    LIMIT 1
    FOR UPDATE SKIP LOCKED;

    IF j_id IS NOT NULL THEN
        RETURN QUERY
        UPDATE {JOBS_TABLE} AS j
        SET
            status = 'processing',
            workerid = p_workerid,
            expires = CASE
                WHEN j.expirems IS NULL THEN j.expires
                ELSE p_now + j.expirems * INTERVAL '1 millisecond'
            END,
            stalls = CASE
                WHEN j.stallms IS NULL THEN j.stalls
                ELSE p_now + j.stallms * INTERVAL '1 millisecond'
            END
        WHERE j.id = j_id
        RETURNING j.*;
    END IF;
END;
$$
"""


def is_duplicate_error(exc: DBAPIError) -> bool:
    """
    Check whether a DDL failure only means the object already exists.

    Args:
        exc: The wrapped driver error.

    Returns:
        True for duplicate index / relation / routine errors.
    """
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in _DUPLICATE_SQLSTATES:
        return True

    message = str(orig).lower()
    return "already exists" in message or "duplicate key name" in message


async def _create_index(engine: AsyncEngine, index: Index) -> None:
    # Own transaction: a failed statement aborts the whole transaction on PostgreSQL
    try:
        async with engine.begin() as conn:
            await conn.execute(CreateIndex(index))
        logger.info("Created index", extra={"index": index.name})
    except DBAPIError as e:
        if not is_duplicate_error(e):
            raise
        logger.debug("Index already exists", extra={"index": index.name})


async def install_claim_routine(engine: AsyncEngine) -> None:
    """
    Replace the claim routine so upgrades never keep stale logic.

    Args:
        engine: A PostgreSQL engine.
    """
    try:
        async with engine.begin() as conn:
            await conn.execute(text(LOCK_CLAIM_ROUTINE))
            await conn.execute(text(DROP_CLAIM_ROUTINE))
            await conn.execute(text(CREATE_CLAIM_ROUTINE))
        logger.info("Installed claim routine", extra={"routine": CLAIM_ROUTINE})
    except DBAPIError as e:
        if not is_duplicate_error(e):
            raise
        logger.debug(
            "Claim routine installed concurrently",
            extra={"routine": CLAIM_ROUTINE},
        )


async def init_schema(engine: AsyncEngine) -> None:
    """
    Idempotently create the jobs table, its indexes and the claim routine.

    Args:
        engine: The engine to bootstrap.
    """
    table = Job.__table__

    try:
        async with engine.begin() as conn:
            await conn.execute(CreateTable(table, if_not_exists=True))
    except DBAPIError as e:
        # IF NOT EXISTS can still lose a race against another bootstrap
        if not is_duplicate_error(e):
            raise

    for index in sorted(table.indexes, key=lambda i: i.name or ""):
        await _create_index(engine, index)

    if engine.dialect.name == "postgresql":
        await install_claim_routine(engine)

    logger.info("Schema ready", extra={"dialect": engine.dialect.name})
