"""
Pytest configuration and shared fixtures.

Database tests run against a fresh SQLite file per test through aiosqlite.
PostgreSQL tests live in tests/integration/test_postgres.py and run only
when TEST_DATABASE_URL is set.
"""

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry
from sqlalchemy.ext.asyncio import AsyncSession

from jobstore.config import Settings
from jobstore.observability.metrics import MetricsCollector
from jobstore.store import JobStore
from jobstore.types.events import StoreEvent
from jobstore.types.job import JobRecord, utcnow


def make_settings(database_url: str) -> Settings:
    return Settings(
        database_url=database_url,
        log_level="INFO",
        log_format="console",
        default_lease_ms=5_000,
        default_stall_ms=60_000,
        worker_batch_size=5,
        worker_poll_interval_seconds=0.05,
        worker_heartbeat_interval_seconds=0.05,
        reaper_interval_seconds=0.05,
        reaper_stall_interval_seconds=0.05,
    )


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """SQLite file unique to the test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}"


@pytest.fixture
def test_settings(database_url: str) -> Settings:
    """Create test settings."""
    return make_settings(database_url)


@pytest.fixture
def registry() -> CollectorRegistry:
    """Prometheus registry private to the test."""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry: CollectorRegistry) -> MetricsCollector:
    """Metrics collector on the private registry."""
    return MetricsCollector(registry=registry)


@pytest.fixture
def events() -> list[StoreEvent]:
    """Collected store events."""
    return []


@pytest_asyncio.fixture
async def store(
    test_settings: Settings,
    metrics: MetricsCollector,
    events: list[StoreEvent],
) -> AsyncGenerator[JobStore]:
    """An open job store with an event recorder attached."""
    store = JobStore(settings=test_settings, metrics=metrics)
    store.add_listener(events.append)
    await store.open()
    assert store.is_open, events

    yield store

    await store.close()


@pytest_asyncio.fixture
async def db_session(store: JobStore) -> AsyncGenerator[AsyncSession]:
    """Create a database session on the test store."""
    async with store.database.session() as session:
        yield session


@pytest.fixture
def t0() -> datetime:
    """A fixed creation time in the past."""
    return utcnow().replace(microsecond=0) - timedelta(hours=1)


@pytest.fixture
def make_job(t0: datetime) -> Callable[..., JobRecord]:
    """Factory for job records with predictable creation order."""
    counter = iter(range(1_000_000))

    def factory(**overrides: Any) -> JobRecord:
        values: dict[str, Any] = {
            "created": t0 + timedelta(seconds=next(counter)),
            "expirems": 5_000,
            "stallms": 60_000,
        }
        values.update(overrides)
        return JobRecord(**values)

    return factory
