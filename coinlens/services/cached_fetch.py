"""Cache-backed fetch: serve from cache, else compute, store, and return fresh."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from coinlens.services.cache import CacheStore, Hit

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    payload: Any
    from_cache: bool
    cached_at: datetime | None = None

    def as_response(self) -> dict:
        """Payload dict plus the ``fromCache``/``cachedAt`` markers."""
        body = dict(self.payload)
        body["fromCache"] = self.from_cache
        if self.cached_at is not None:
            body["cachedAt"] = self.cached_at.isoformat()
        return body


async def cached_fetch(
    store: CacheStore,
    key: str,
    ttl_seconds: int,
    compute: Callable[[], Awaitable[Any]],
) -> FetchResult:
    """Return the cached value for ``key``, or compute and cache it.

    Errors from ``compute`` propagate unchanged. A failed cache write is
    logged and the fresh value is still returned. No lock is taken: two
    concurrent misses both compute and the later write wins.
    """
    cached = await store.get(key)
    if isinstance(cached, Hit):
        logger.info("Serving %s from cache (stored %s)", key, cached.cached_at.isoformat())
        return FetchResult(payload=cached.value, from_cache=True, cached_at=cached.cached_at)

    logger.info("Cache miss for %s, computing", key)
    payload = await compute()

    written = await store.set(key, payload, ttl_seconds)
    if not written:
        logger.warning("Cache write failed for %s, returning uncached result: %s", key, written.reason)

    return FetchResult(payload=payload, from_cache=False)
