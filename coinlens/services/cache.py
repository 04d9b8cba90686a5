"""Best-effort TTL cache backed by the ``cache`` table.

The cache is a performance optimization, never a correctness dependency:
reads that fail degrade to a miss, writes that fail report ``Err`` but never
raise. Expiry is enforced lazily on read (an expired row is deleted when
encountered) and in bulk by ``cleanup()``; there is no background sweeper.

Concurrent misses on the same key are not coordinated. Both callers compute
and both write; the last write wins. That duplicate work is accepted.

Keys follow ``{domain}:{identifier}:{variant}``, e.g. ``crypto:BTC:full``.
The store never parses keys; ``key_identifier`` exists for consumers that
group entries for display.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from coinlens.config import settings
from coinlens.services.persistence import CacheTable

logger = logging.getLogger(__name__)

# Fixed TTLs for the domain wrappers (seconds)
FINANCIAL_TTL = 3600
ANALYSIS_TTL = 1800
NEWS_TTL = 900
FULL_ANALYSIS_TTL = 21600
PREDICTION_TTL = 7200
RECOMMENDATIONS_TTL = 3600

RECOMMENDATIONS_KEY = "crypto:recommendations:today"


# ---------------------------------------------------------------------------
# Tagged results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Hit:
    value: Any
    expires_at: datetime
    cached_at: datetime

    def __bool__(self) -> bool:
        return True


class Miss:
    """Key absent, expired, or unreadable."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISS"


class Ok:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return True

    def __repr__(self) -> str:
        return "OK"


@dataclass(frozen=True)
class Err:
    reason: str

    def __bool__(self) -> bool:
        return False


MISS = Miss()
OK = Ok()

CacheRead = Hit | Miss
CacheWrite = Ok | Err


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

def stock_key(ticker: str, variant: str) -> str:
    return f"stock:{ticker}:{variant}"


def crypto_key(symbol: str, variant: str) -> str:
    return f"crypto:{symbol}:{variant}"


def key_identifier(key: str) -> str:
    """Return the ``{identifier}`` segment of a namespaced key."""
    parts = key.split(":")
    return parts[1] if len(parts) > 1 else key


def pattern_prefix(pattern: str) -> str | None:
    """Translate a trailing-wildcard glob into a key prefix.

    ``"crypto:BTC:*"`` becomes ``"crypto:BTC:"``. A pattern with no wildcard
    returns None (exact key). Wildcards anywhere else are not supported.
    """
    if "*" not in pattern:
        return None
    prefix = pattern[:-1] if pattern.endswith("*") else pattern
    if "*" in prefix:
        raise ValueError(f"Only a single trailing '*' is supported in cache patterns: {pattern!r}")
    return prefix


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class CacheStore:
    """TTL key/value store over an injected ``CacheTable``."""

    def __init__(self, table: CacheTable, clock: Callable[[], datetime] = _utcnow):
        self.table = table
        self.clock = clock

    async def get(self, key: str) -> CacheRead:
        """Return ``Hit`` for a live entry, ``MISS`` otherwise.

        An expired row is deleted as a side effect. Backend errors are
        logged and reported as a miss.
        """
        try:
            entry = await self.table.fetch(key)
        except Exception as e:
            logger.warning("Cache read failed for %s, treating as miss: %s", key, e)
            return MISS

        if entry is None:
            logger.debug("Cache miss: %s", key)
            return MISS

        now = self.clock()
        if entry.expires_at <= now:
            logger.debug("Cache entry expired: %s", key)
            await self._evict(key, now)
            return MISS

        logger.debug("Cache hit: %s", key)
        return Hit(value=entry.value, expires_at=entry.expires_at, cached_at=entry.updated_at)

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> CacheWrite:
        """Upsert ``value`` under ``key`` for ``ttl_seconds``.

        Returns ``OK`` or ``Err(reason)``; never raises. Callers keep using
        their freshly computed value either way.
        """
        if ttl_seconds is None:
            ttl_seconds = settings.cache_default_ttl
        if ttl_seconds <= 0:
            logger.error("Cache write rejected for %s: ttl_seconds must be positive (got %s)", key, ttl_seconds)
            return Err(f"ttl_seconds must be positive, got {ttl_seconds}")

        now = self.clock()
        try:
            expires_at = now + timedelta(seconds=ttl_seconds)
            await self.table.upsert(key, value, expires_at, now)
        except Exception as e:
            logger.error("Cache write failed for %s: %s", key, e)
            return Err(str(e) or type(e).__name__)

        logger.debug("Cache stored: %s (expires %s)", key, expires_at.isoformat())
        return OK

    async def _evict(self, key: str, now: datetime) -> None:
        # A row refreshed since the read has a later expiry and is kept
        try:
            await self.table.delete_key_if_expired(key, now)
        except Exception as e:
            logger.warning("Cache eviction failed for %s: %s", key, e)

    async def delete(self, key: str) -> None:
        try:
            await self.table.delete_key(key)
        except Exception as e:
            logger.warning("Cache delete failed for %s: %s", key, e)

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a trailing-wildcard pattern like ``stock:NVDA:*``.

        Matching keys are resolved first, then deleted; a key inserted in
        between survives. Returns the number of rows removed.
        """
        prefix = pattern_prefix(pattern)
        try:
            if prefix is None:
                return await self.table.delete_key(pattern)
            keys = await self.table.keys_with_prefix(prefix)
            removed = await self.table.delete_keys(keys)
        except Exception as e:
            logger.warning("Cache pattern delete failed for %s: %s", pattern, e)
            return 0

        logger.info("Invalidated %d cache entries matching %s", removed, pattern)
        return removed

    async def cleanup(self) -> int:
        """Delete every expired row. Returns the number removed."""
        try:
            removed = await self.table.delete_expired(self.clock())
        except Exception as e:
            logger.warning("Cache cleanup failed: %s", e)
            return 0

        if removed:
            logger.info("Cleaned up %d expired cache entries", removed)
        return removed

    # ------------------------------------------------------------------
    # Stock wrappers
    # ------------------------------------------------------------------

    async def get_financial_data(self, ticker: str) -> CacheRead:
        return await self.get(stock_key(ticker, "financial"))

    async def set_financial_data(self, ticker: str, data: Any) -> CacheWrite:
        return await self.set(stock_key(ticker, "financial"), data, FINANCIAL_TTL)

    async def get_analysis(self, ticker: str) -> CacheRead:
        return await self.get(stock_key(ticker, "analysis"))

    async def set_analysis(self, ticker: str, data: Any) -> CacheWrite:
        return await self.set(stock_key(ticker, "analysis"), data, ANALYSIS_TTL)

    async def get_news(self, ticker: str) -> CacheRead:
        return await self.get(stock_key(ticker, "news"))

    async def set_news(self, ticker: str, data: Any) -> CacheWrite:
        return await self.set(stock_key(ticker, "news"), data, NEWS_TTL)

    async def get_full_analysis(self, ticker: str) -> CacheRead:
        return await self.get(stock_key(ticker, "full"))

    async def set_full_analysis(self, ticker: str, data: Any) -> CacheWrite:
        return await self.set(stock_key(ticker, "full"), data, FULL_ANALYSIS_TTL)

    async def invalidate_stock(self, ticker: str) -> int:
        return await self.delete_pattern(stock_key(ticker, "*"))

    # ------------------------------------------------------------------
    # Crypto wrappers
    # ------------------------------------------------------------------

    async def get_crypto_analysis(self, symbol: str) -> CacheRead:
        return await self.get(crypto_key(symbol, "full"))

    async def set_crypto_analysis(self, symbol: str, data: Any) -> CacheWrite:
        return await self.set(crypto_key(symbol, "full"), data, FULL_ANALYSIS_TTL)

    async def get_crypto_prediction(self, symbol: str) -> CacheRead:
        return await self.get(crypto_key(symbol, "prediction"))

    async def set_crypto_prediction(self, symbol: str, data: Any) -> CacheWrite:
        return await self.set(crypto_key(symbol, "prediction"), data, PREDICTION_TTL)

    async def get_crypto_recommendations(self) -> CacheRead:
        return await self.get(RECOMMENDATIONS_KEY)

    async def set_crypto_recommendations(self, data: Any) -> CacheWrite:
        return await self.set(RECOMMENDATIONS_KEY, data, RECOMMENDATIONS_TTL)

    async def invalidate_crypto(self, symbol: str) -> int:
        return await self.delete_pattern(crypto_key(symbol, "*"))
