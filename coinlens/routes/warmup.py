"""Cache warm-up — pre-compute full analyses for popular coins.

Meant to be hit by a scheduler (every 3 hours) with the cron secret as a
bearer token.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Header

from coinlens.config import settings
from coinlens.dependencies import get_cache_store, get_crypto_service
from coinlens.errors import UnauthorizedError
from coinlens.routes.crypto import compute_full_analysis
from coinlens.services.cache import CacheStore, Hit
from coinlens.services.crypto_data import CryptoDataService

logger = logging.getLogger(__name__)

router = APIRouter()

POPULAR_CRYPTOS = ["BTC", "ETH", "DOGE", "XRP", "SOL", "ADA"]

# Entries younger than this are left alone
FRESH_FOR = timedelta(minutes=60)
WARMUP_INTERVAL = timedelta(hours=3)


def _check_secret(authorization: str | None) -> None:
    if not settings.cron_secret or authorization != f"Bearer {settings.cron_secret}":
        raise UnauthorizedError()


@router.get("/crypto-warmup")
async def warmup(
    authorization: str | None = Header(None),
    store: CacheStore = Depends(get_cache_store),
    crypto_service: CryptoDataService = Depends(get_crypto_service),
) -> dict:
    _check_secret(authorization)

    started = time.monotonic()
    results = []
    logger.info("Cache warm-up starting for %s", ", ".join(POPULAR_CRYPTOS))

    for index, symbol in enumerate(POPULAR_CRYPTOS):
        existing = await store.get_crypto_analysis(symbol)
        if isinstance(existing, Hit):
            age = datetime.now(timezone.utc) - existing.cached_at
            if age < FRESH_FOR:
                age_minutes = age.total_seconds() / 60
                logger.info("Warm-up skipping %s, cache %.1f min old", symbol, age_minutes)
                results.append({"symbol": symbol, "status": "skipped", "reason": f"Cache {age_minutes:.1f} min old"})
                continue

        try:
            result = await compute_full_analysis(symbol, crypto_service)
        except Exception as e:
            logger.error("Warm-up failed for %s: %s", symbol, e)
            results.append({"symbol": symbol, "status": "failed", "error": str(e)})
            continue

        written = await store.set_crypto_analysis(symbol, result)
        recommendation = result["recommendation"]
        results.append({
            "symbol": symbol,
            "status": "success",
            "decision": recommendation["decision"],
            "confidence": recommendation["confidence"],
            "price": result.get("price"),
            "cached": bool(written),
            "cached_at": result["generatedAt"],
        })

        # Stay under upstream rate limits
        if settings.warmup_delay_seconds and index < len(POPULAR_CRYPTOS) - 1:
            await asyncio.sleep(settings.warmup_delay_seconds)

    counts = {status: sum(1 for r in results if r["status"] == status) for status in ("success", "skipped", "failed")}
    duration = round(time.monotonic() - started, 1)
    logger.info(
        "Cache warm-up done in %.1fs: %d ok, %d skipped, %d failed",
        duration, counts["success"], counts["skipped"], counts["failed"],
    )

    now = datetime.now(timezone.utc)
    return {
        "success": True,
        "warmup_time": now.isoformat(),
        "duration_seconds": duration,
        "total_cryptos": len(POPULAR_CRYPTOS),
        "successful": counts["success"],
        "skipped": counts["skipped"],
        "failed": counts["failed"],
        "results": results,
        "next_warmup": (now + WARMUP_INTERVAL).isoformat(),
    }
