"""
Shared fixtures: an in-memory SQLite cache table, a controllable clock,
and a cache store wired to both.
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from coinlens.services.cache import CacheStore
from coinlens.services.persistence import CacheTable, create_engine

MEMORY_DB = "sqlite+aiosqlite:///:memory:"


class FakeClock:
    """Callable clock returning a fixed UTC instant that tests can advance."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def table():
    engine = create_engine(MEMORY_DB)
    cache_table = CacheTable(engine)
    await cache_table.create_schema()
    yield cache_table
    await engine.dispose()


@pytest.fixture
def store(table, clock) -> CacheStore:
    return CacheStore(table, clock=clock)
