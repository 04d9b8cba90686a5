"""Cache table model and the thin query client the cache store talks to.

The table holds one row per key: ``(key, value, expires_at)`` plus
``created_at``/``updated_at`` bookkeeping. Production points DATABASE_URL at
PostgreSQL (asyncpg); local runs and tests use SQLite (aiosqlite).

CacheTable only speaks the small contract the store needs: equality lookup,
upsert by key, delete by key / key set / expiry, and prefix listing. Errors
are not caught here; the store decides how to degrade.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Literal

from sqlalchemy import JSON, Column, DateTime, and_, delete, func, select, text, true
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, SQLModel

logger = logging.getLogger(__name__)

EntryState = Literal["all", "valid", "expired"]

_UPSERT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class CacheEntry(SQLModel, table=True):
    """One cached payload. ``value`` is opaque JSON owned by the caller."""

    __tablename__ = "cache"

    key: str = Field(primary_key=True, max_length=512)
    value: Any = Field(default=None, sa_column=Column(JSON, nullable=True))
    expires_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False, index=True))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything we write is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _normalized(entry: CacheEntry) -> CacheEntry:
    entry.expires_at = as_utc(entry.expires_at)
    entry.created_at = as_utc(entry.created_at)
    entry.updated_at = as_utc(entry.updated_at)
    return entry


def like_prefix(prefix: str) -> str:
    """Build a LIKE pattern matching keys that start with ``prefix`` literally."""
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped + "%"


def starts_with(prefix: str):
    """Case-sensitive "key starts with prefix" clause.

    LIKE narrows the scan but ignores ASCII case on SQLite, so the substring
    comparison decides the match.
    """
    return and_(
        CacheEntry.key.like(like_prefix(prefix), escape="\\"),
        func.substr(CacheEntry.key, 1, len(prefix)) == prefix,
    )


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine for the cache table.

    In-memory SQLite needs a single shared connection, otherwise every
    session would see its own empty database.
    """
    # Keep driver chatter out of the application log
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)

    kwargs: dict = {"echo": echo}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url or database_url.rstrip("/").endswith("sqlite+aiosqlite:"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True
    return create_async_engine(database_url, **kwargs)


class CacheTable:
    """Query client over the ``cache`` table."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._sessions = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    @asynccontextmanager
    async def session(self):
        async with self._sessions() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def ping(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    # ------------------------------------------------------------------
    # Store contract
    # ------------------------------------------------------------------

    async def fetch(self, key: str) -> CacheEntry | None:
        async with self.session() as session:
            result = await session.execute(select(CacheEntry).where(CacheEntry.key == key))
            entry = result.scalar_one_or_none()
        return _normalized(entry) if entry is not None else None

    async def upsert(self, key: str, value: Any, expires_at: datetime, now: datetime) -> None:
        """Insert the row, or replace value/expiry and bump updated_at on conflict."""
        insert_fn = _UPSERT_INSERTS.get(self.engine.dialect.name)
        async with self.session() as session:
            if insert_fn is None:
                await self._upsert_by_select(session, key, value, expires_at, now)
            else:
                stmt = insert_fn(CacheEntry).values(
                    key=key,
                    value=value,
                    expires_at=expires_at,
                    created_at=now,
                    updated_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["key"],
                    set_={
                        "value": stmt.excluded["value"],
                        "expires_at": stmt.excluded["expires_at"],
                        "updated_at": stmt.excluded["updated_at"],
                    },
                )
                await session.execute(stmt)
            await session.commit()

    async def _upsert_by_select(
        self, session: AsyncSession, key: str, value: Any, expires_at: datetime, now: datetime
    ) -> None:
        # Dialects without ON CONFLICT support
        result = await session.execute(select(CacheEntry).where(CacheEntry.key == key))
        existing = result.scalar_one_or_none()
        if existing:
            existing.value = value
            existing.expires_at = expires_at
            existing.updated_at = now
        else:
            session.add(CacheEntry(key=key, value=value, expires_at=expires_at, created_at=now, updated_at=now))

    async def delete_key(self, key: str) -> int:
        return await self._delete(delete(CacheEntry).where(CacheEntry.key == key))

    async def delete_keys(self, keys: list[str]) -> int:
        if not keys:
            return 0
        return await self._delete(delete(CacheEntry).where(CacheEntry.key.in_(keys)))

    async def delete_key_if_expired(self, key: str, now: datetime) -> int:
        """Delete ``key`` only while its stored expiry is still at or before ``now``."""
        return await self._delete(
            delete(CacheEntry).where(CacheEntry.key == key, CacheEntry.expires_at <= now)
        )

    async def delete_expired(self, now: datetime) -> int:
        return await self._delete(delete(CacheEntry).where(CacheEntry.expires_at <= now))

    async def keys_with_prefix(self, prefix: str) -> list[str]:
        stmt = select(CacheEntry.key).where(starts_with(prefix))
        async with self.session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def _delete(self, stmt) -> int:
        async with self.session() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount or 0

    # ------------------------------------------------------------------
    # Inspection (admin surface)
    # ------------------------------------------------------------------

    @staticmethod
    def _filters(state: EntryState, prefix: str | None, now: datetime | None) -> list:
        clauses = []
        if state != "all":
            if now is None:
                raise ValueError("now is required to filter by expiry state")
            clauses.append(CacheEntry.expires_at > now if state == "valid" else CacheEntry.expires_at <= now)
        if prefix:
            clauses.append(starts_with(prefix))
        return clauses or [true()]

    async def count(self, state: EntryState = "all", prefix: str | None = None, now: datetime | None = None) -> int:
        stmt = select(func.count()).select_from(CacheEntry).where(*self._filters(state, prefix, now))
        async with self.session() as session:
            result = await session.execute(stmt)
            return int(result.scalar_one())

    async def list_entries(
        self,
        state: EntryState = "all",
        prefix: str | None = None,
        now: datetime | None = None,
        limit: int | None = 20,
    ) -> list[CacheEntry]:
        """Rows matching the filters, most recently created first."""
        stmt = (
            select(CacheEntry)
            .where(*self._filters(state, prefix, now))
            .order_by(CacheEntry.created_at.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self.session() as session:
            result = await session.execute(stmt)
            entries = list(result.scalars().all())
        return [_normalized(entry) for entry in entries]
