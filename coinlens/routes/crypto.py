"""Crypto analysis routes — market data + AI commentary, served through the cache.

GET    /crypto/recommendations    → today's picks            (crypto:recommendations:today, 1h)
GET    /crypto/predict/{symbol}   → 1/7/30-day price guesses (crypto:{SYMBOL}:prediction, 2h)
GET    /crypto/{symbol}           → full analysis            (crypto:{SYMBOL}:full, 6h)
DELETE /crypto/{symbol}/cache     → invalidate crypto:{SYMBOL}:*
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from coinlens.dependencies import get_cache_store, get_crypto_service
from coinlens.errors import UpstreamError
from coinlens.services import crypto_ai
from coinlens.services.cache import (
    FULL_ANALYSIS_TTL,
    PREDICTION_TTL,
    RECOMMENDATIONS_KEY,
    RECOMMENDATIONS_TTL,
    CacheStore,
    crypto_key,
)
from coinlens.services.cached_fetch import cached_fetch
from coinlens.services.crypto_data import MOCK_ONLY_SYMBOLS, CryptoDataService, technical_indicators

logger = logging.getLogger(__name__)

router = APIRouter()

# Coins considered for the daily recommendations
RECOMMENDATION_COINS = ["BTC", "ETH", "DOGE", "XRP", "SOL", "ADA"]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def compute_full_analysis(symbol: str, crypto_service: CryptoDataService) -> dict:
    """Market snapshot + sentiment + AI decision + optional long-term outlook."""
    data = await crypto_service.get_crypto_data(symbol)
    if symbol not in MOCK_ONLY_SYMBOLS:
        data["fearGreedIndex"] = await crypto_service.get_fear_greed_index()

    recommendation = await crypto_ai.analyze_crypto(data)
    logger.info("AI analysis for %s: %s (%s%%)", symbol, recommendation["decision"], recommendation["confidence"])

    # A failed outlook does not fail the analysis
    try:
        recommendation["longTermOutlook"] = await crypto_ai.analyze_long_term_outlook(data)
    except Exception as e:
        logger.error("Long-term outlook failed for %s: %s", symbol, e)
        recommendation["longTermOutlook"] = None

    return {**data, "recommendation": recommendation, "generatedAt": _now_iso()}


def enrich_market_row(row: dict) -> dict:
    """Trim a /coins/markets row to what the recommendation prompt needs."""
    change_7d = row.get("price_change_percentage_7d_in_currency") or 0
    change_30d = row.get("price_change_percentage_30d_in_currency") or 0
    price = row.get("current_price") or 0
    return {
        "symbol": str(row.get("symbol", "")).upper(),
        "name": row.get("name"),
        "price": price,
        "change24h": row.get("price_change_percentage_24h") or 0,
        "change7d": change_7d,
        "marketCap": f"{(row.get('market_cap') or 0) / 1e9:.2f}B",
        "technicalIndicators": technical_indicators(
            row.get("high_24h") or price, row.get("low_24h") or price, change_7d, change_30d
        ),
    }


@router.get("/crypto/recommendations")
async def recommendations(
    store: CacheStore = Depends(get_cache_store),
    crypto_service: CryptoDataService = Depends(get_crypto_service),
) -> dict:
    """Today's hot pick / rising star / safe haven. For fun, not advice."""

    async def compute() -> dict:
        rows = await crypto_service.get_multiple_cryptos(RECOMMENDATION_COINS)
        if not rows:
            raise UpstreamError("Coin market data unavailable")
        coins = [enrich_market_row(row) for row in rows]
        picks = await crypto_ai.today_recommendations(coins)
        return {**picks, "coins": coins, "generatedAt": _now_iso()}

    result = await cached_fetch(store, RECOMMENDATIONS_KEY, RECOMMENDATIONS_TTL, compute)
    return result.as_response()


@router.get("/crypto/predict/{symbol}")
async def predict(
    symbol: str,
    store: CacheStore = Depends(get_cache_store),
    crypto_service: CryptoDataService = Depends(get_crypto_service),
) -> dict:
    """AI price prediction for 1, 7 and 30 days."""
    symbol = symbol.upper()

    async def compute() -> dict:
        data = await crypto_service.get_crypto_data(symbol)
        if symbol == "BTC":
            data["fearGreedIndex"] = await crypto_service.get_fear_greed_index()
        prediction = await crypto_ai.predict_price(data)
        return {
            "symbol": symbol,
            "name": data.get("name"),
            "currentPrice": data.get("price"),
            "prediction": prediction,
            "generatedAt": _now_iso(),
        }

    result = await cached_fetch(store, crypto_key(symbol, "prediction"), PREDICTION_TTL, compute)
    return result.as_response()


@router.get("/crypto/{symbol}")
async def analysis(
    symbol: str,
    store: CacheStore = Depends(get_cache_store),
    crypto_service: CryptoDataService = Depends(get_crypto_service),
) -> dict:
    """Full market analysis with AI investment commentary."""
    symbol = symbol.upper()
    result = await cached_fetch(
        store,
        crypto_key(symbol, "full"),
        FULL_ANALYSIS_TTL,
        lambda: compute_full_analysis(symbol, crypto_service),
    )
    return result.as_response()


@router.delete("/crypto/{symbol}/cache")
async def invalidate(symbol: str, store: CacheStore = Depends(get_cache_store)) -> dict:
    """Drop every cached entry for one symbol."""
    symbol = symbol.upper()
    removed = await store.invalidate_crypto(symbol)
    return {"status": "ok", "symbol": symbol, "deletedCount": removed}
