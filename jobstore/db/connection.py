"""
Database connection management.
Handles the async SQLAlchemy engine and session creation for one store handle.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from jobstore.config import Settings
from jobstore.errors import StoreNotOpenError

logger = logging.getLogger(__name__)


def create_engine_for(settings: Settings) -> AsyncEngine:
    """
    Create the async engine described by the settings.

    SQLite files get WAL journaling and a busy timeout so concurrent writers
    wait for the write lock instead of failing immediately.

    Args:
        settings: Application settings.

    Returns:
        AsyncEngine: A new SQLAlchemy async engine.
    """
    url = make_url(settings.database_url)
    echo = settings.log_level.upper() == "DEBUG"

    if url.get_backend_name() != "sqlite":
        return create_async_engine(
            url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            echo=echo,
            pool_pre_ping=True,
            connect_args={"timeout": settings.database_connect_timeout_seconds},
        )

    in_memory = url.database in (None, "", ":memory:")
    engine_kwargs: dict[str, Any] = {}
    if in_memory:
        # one shared connection, otherwise every checkout sees an empty database
        engine_kwargs["poolclass"] = StaticPool

    engine = create_async_engine(
        url,
        echo=echo,
        connect_args={
            "check_same_thread": False,
            "timeout": settings.database_connect_timeout_seconds,
        },
        **engine_kwargs,
    )

    busy_ms = int(settings.database_connect_timeout_seconds * 1000)

    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_conn: Any, _connection_record: Any) -> None:
        cursor = dbapi_conn.cursor()
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute(f"PRAGMA busy_timeout={busy_ms}")
        cursor.close()

    return engine


class Database:
    """
    Explicit handle on one database.

    Nothing is connected until open() is called; using the handle before that,
    or after close(), raises StoreNotOpenError.
    """

    def __init__(self, settings: Settings):
        self._settings = settings
        self._engine: AsyncEngine | None = None
        self._sessionmaker: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise StoreNotOpenError()
        return self._engine

    def open(self) -> AsyncEngine:
        """
        Create the engine and session factory.

        Returns:
            AsyncEngine: The engine backing this handle.
        """
        if self._engine is None:
            self._engine = create_engine_for(self._settings)
            self._sessionmaker = async_sessionmaker(
                bind=self._engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
            logger.info(
                "Database engine created",
                extra={"dialect": self._engine.dialect.name},
            )
        return self._engine

    async def close(self, force: bool = False) -> None:
        """
        Dispose the engine. Safe to call on a closed handle.

        Args:
            force: Drop pooled connections without closing them.
        """
        engine, self._engine, self._sessionmaker = self._engine, None, None
        if engine is not None:
            await engine.dispose(close=not force)
            logger.info("Database engine disposed", extra={"force": force})

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession]:
        """
        Session scoped to one unit of work.

        Commits on success and rolls back on any exception.

        Yields:
            AsyncSession: An async database session.

        Raises:
            StoreNotOpenError: If the handle is not open.
        """
        if self._sessionmaker is None:
            raise StoreNotOpenError()

        async with self._sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
