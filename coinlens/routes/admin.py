"""Admin cache inspection and cleanup.

GET    /admin/cache-status   → counts, recent valid entries, crypto entries
                               (?detail=true adds expired rows and per-symbol groups)
DELETE /admin/cache-status   → remove expired rows
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query

from coinlens.dependencies import get_cache_store, get_cache_table
from coinlens.errors import CacheBackendError
from coinlens.services.cache import CacheStore, key_identifier
from coinlens.services.persistence import CacheEntry, CacheTable

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin")

CRYPTO_PREFIX = "crypto:"
LISTING_LIMIT = 20
DETAIL_LIMIT = 500


def _remaining_minutes(entry: CacheEntry, now: datetime) -> int:
    return int((entry.expires_at - now).total_seconds() // 60)


def _entry_view(entry: CacheEntry, now: datetime) -> dict:
    return {
        "key": entry.key,
        "expiresAt": entry.expires_at.isoformat(),
        "createdAt": entry.created_at.isoformat(),
        "updatedAt": entry.updated_at.isoformat(),
        "remainingMinutes": _remaining_minutes(entry, now),
    }


def group_by_identifier(entries: list[CacheEntry], now: datetime) -> list[dict]:
    """Aggregate entries by the ``{identifier}`` segment of their key."""
    groups: dict[str, dict] = {}
    for entry in entries:
        identifier = key_identifier(entry.key)
        group = groups.setdefault(
            identifier, {"identifier": identifier, "entries": 0, "lastAccess": None, "expired": True}
        )
        group["entries"] += 1
        if group["lastAccess"] is None or entry.updated_at > group["lastAccess"]:
            group["lastAccess"] = entry.updated_at
        if entry.expires_at > now:
            group["expired"] = False

    views = sorted(groups.values(), key=lambda g: g["lastAccess"], reverse=True)
    for group in views:
        group["lastAccess"] = group["lastAccess"].isoformat()
    return views


@router.get("/cache-status")
async def cache_status(
    detail: bool = Query(False),
    table: CacheTable = Depends(get_cache_table),
) -> dict:
    """Read-only view of the cache table."""
    now = datetime.now(timezone.utc)
    try:
        summary = {
            "total": await table.count(),
            "valid": await table.count("valid", now=now),
            "expired": await table.count("expired", now=now),
            "crypto": await table.count("valid", prefix=CRYPTO_PREFIX, now=now),
        }
        valid = await table.list_entries("valid", now=now, limit=LISTING_LIMIT)
        crypto = await table.list_entries("valid", prefix=CRYPTO_PREFIX, now=now, limit=None)
        if detail:
            expired = await table.list_entries("expired", now=now, limit=LISTING_LIMIT)
            everything = await table.list_entries("all", limit=DETAIL_LIMIT)
    except Exception as e:
        raise CacheBackendError(f"Cache status query failed: {e}") from e

    body = {
        "status": "ok",
        "timestamp": now.isoformat(),
        "summary": summary,
        "validCache": [_entry_view(entry, now) for entry in valid],
        "cryptoCache": [{**_entry_view(entry, now), "symbol": key_identifier(entry.key)} for entry in crypto],
    }
    if detail:
        body["expiredCache"] = [_entry_view(entry, now) for entry in expired]
        body["symbols"] = group_by_identifier(everything, now)
    return body


@router.delete("/cache-status")
async def cleanup_expired(store: CacheStore = Depends(get_cache_store)) -> dict:
    """Delete every expired row."""
    removed = await store.cleanup()
    return {"status": "ok", "message": "Expired cache entries removed", "deletedCount": removed}
