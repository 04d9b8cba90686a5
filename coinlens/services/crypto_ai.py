"""AI commentary for crypto market data.

Each function builds a prompt asking for a JSON reply, runs the blocking
model call in a worker thread, and normalises whatever comes back so the
routes always receive a complete structure.
"""

import asyncio
import json
import logging

from coinlens.services.llm_client import complete, parse_json_reply

logger = logging.getLogger(__name__)

DECISIONS = ("STRONG_BUY", "BUY", "HOLD", "SELL", "STRONG_SELL")

DISCLAIMER = (
    "For entertainment only, not investment advice. Crypto assets are highly "
    "volatile and you can lose money."
)


def _market_context(data: dict) -> str:
    """Compact, model-friendly view of a market snapshot."""
    ti = data.get("technicalIndicators") or {}
    lines = [
        f"Coin: {data.get('name')} ({data.get('symbol')})",
        f"Price: ${data.get('price')}",
        f"24h range: ${data.get('low24h')} - ${data.get('high24h')}",
        f"Change 24h / 7d / 30d: {data.get('change24h')}% / {data.get('change7d')}% / {data.get('change30d')}%",
        f"Market cap: {data.get('marketCap')} (rank {data.get('rank')})",
        f"24h volume: {data.get('volume24h')}",
        f"All-time high: ${data.get('ath')} on {data.get('athDate')}",
        f"RSI (est.): {ti.get('rsi')}, trend: {ti.get('trend')}",
        f"Support / resistance: {ti.get('support')} / {ti.get('resistance')}",
    ]
    if data.get("dominance") is not None:
        lines.append(f"BTC dominance: {data['dominance']}%")
    if data.get("fearGreedIndex") is not None:
        lines.append(f"Fear & Greed index: {data['fearGreedIndex']}")
    if data.get("isApiFailure"):
        lines.append(f"NOTE: {data.get('apiFailureNote')}")
    return "\n".join(lines)


async def _ask(system_prompt: str, user_prompt: str, temperature: float, max_tokens: int) -> dict | None:
    reply = await asyncio.to_thread(
        complete,
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        temperature=temperature,
        max_tokens=max_tokens,
    )
    parsed = parse_json_reply(reply)
    if parsed is None:
        logger.warning("Model reply was not valid JSON: %.200s", reply)
    return parsed


def _number(value, default: float | None) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _str_list(value, default: list[str]) -> list[str]:
    if isinstance(value, list):
        items = [str(v) for v in value if v]
        if items:
            return items
    return default


# ---------------------------------------------------------------------------
# Investment analysis
# ---------------------------------------------------------------------------

async def analyze_crypto(data: dict) -> dict:
    """Decision, confidence and price levels for one coin."""
    system_prompt = (
        "You are a cryptocurrency technical analyst. Base your view on chart structure "
        "(support, resistance, trend) and the momentum figures provided. Respond in JSON "
        "with this exact structure:\n"
        "{\n"
        f'  "decision": one of {list(DECISIONS)},\n'
        '  "confidence": 0-100,\n'
        '  "reasoning": "2-3 sentences",\n'
        '  "keyPoints": ["..."],\n'
        '  "risks": ["..."],\n'
        '  "targetPrice": number or null,\n'
        '  "timeHorizon": "short|medium|long",\n'
        '  "investmentLevels": {"entryPrice": n, "targetPrice1": n, "targetPrice2": n, '
        '"targetPrice3": n, "stopLoss": n, "reasoning": "..."}\n'
        "}"
    )
    parsed = await _ask(system_prompt, _market_context(data), temperature=0.7, max_tokens=1200) or {}
    return normalize_analysis(parsed, float(data.get("price") or 0))


def normalize_analysis(parsed: dict, current_price: float) -> dict:
    decision = str(parsed.get("decision", "HOLD")).upper()
    if decision not in DECISIONS:
        decision = "HOLD"
    confidence = int(min(100, max(0, _number(parsed.get("confidence"), 50))))
    levels = parsed.get("investmentLevels") or {}

    return {
        "decision": decision,
        "confidence": confidence,
        "reasoning": parsed.get("reasoning") or "Opinion based on the available market data.",
        "keyPoints": _str_list(parsed.get("keyPoints"), ["Further analysis needed"]),
        "risks": _str_list(parsed.get("risks"), ["High volatility", "Regulatory risk"]),
        "targetPrice": _number(parsed.get("targetPrice"), None),
        "timeHorizon": parsed.get("timeHorizon") or "medium",
        "investmentLevels": {
            "entryPrice": _number(levels.get("entryPrice"), current_price),
            "targetPrice1": _number(levels.get("targetPrice1"), None) or current_price * 1.07,
            "targetPrice2": _number(levels.get("targetPrice2"), None) or current_price * 1.20,
            "targetPrice3": _number(levels.get("targetPrice3"), None) or current_price * 1.40,
            "stopLoss": _number(levels.get("stopLoss"), None) or current_price * 0.93,
            "reasoning": levels.get("reasoning") or "Levels derived from technical analysis.",
        },
    }


async def analyze_long_term_outlook(data: dict) -> dict:
    """Long-term fundamentals view. Raises on model failure; callers treat it as optional."""
    system_prompt = (
        "You are a cryptocurrency research analyst. Give a concrete, practical long-term "
        "outlook for the coin. Respond in JSON with keys: potential (string), useCases "
        "(list), partnerships (list), futureProspects (list), risks (list), summary "
        "(one sentence)."
    )
    parsed = await _ask(system_prompt, _market_context(data), temperature=0.7, max_tokens=900)
    if parsed is None:
        raise ValueError("Long-term outlook reply could not be parsed")
    return {
        "potential": parsed.get("potential", ""),
        "useCases": _str_list(parsed.get("useCases"), []),
        "partnerships": _str_list(parsed.get("partnerships"), []),
        "futureProspects": _str_list(parsed.get("futureProspects"), []),
        "risks": _str_list(parsed.get("risks"), []),
        "summary": parsed.get("summary", ""),
    }


# ---------------------------------------------------------------------------
# Price prediction
# ---------------------------------------------------------------------------

async def predict_price(data: dict) -> dict:
    """1/7/30-day price guesses. Flat, low-confidence fallback on failure."""
    current = float(data.get("price") or 0)
    system_prompt = (
        "You are a crypto market forecaster. This is for fun and will not be accurate. "
        "Respond in JSON: {\"day1\": {\"price\": n, \"change\": pct, \"confidence\": "
        "\"low|medium|high\"}, \"day7\": {...}, \"day30\": {...}, \"reasoning\": \"...\"}"
    )
    try:
        parsed = await _ask(system_prompt, _market_context(data), temperature=0.8, max_tokens=600)
    except Exception as e:
        logger.error("Price prediction failed for %s: %s", data.get("symbol"), e)
        parsed = None

    parsed = parsed or {}
    result = {}
    for horizon in ("day1", "day7", "day30"):
        raw = parsed.get(horizon) or {}
        price = _number(raw.get("price"), current)
        change = _number(raw.get("change"), None)
        if change is None:
            change = ((price - current) / current * 100) if current else 0.0
        result[horizon] = {
            "price": price,
            "change": round(change, 2),
            "confidence": raw.get("confidence") or "low",
        }
    result["reasoning"] = parsed.get("reasoning") or "Prediction unavailable; showing current price."
    result["disclaimer"] = DISCLAIMER
    return result


# ---------------------------------------------------------------------------
# Daily recommendations
# ---------------------------------------------------------------------------

async def today_recommendations(coins: list[dict]) -> dict:
    """Pick a hot pick, rising star and safe haven among ``coins``."""
    listing = json.dumps(
        [
            {
                "symbol": c["symbol"],
                "price": c["price"],
                "change24h": c["change24h"],
                "change7d": c["change7d"],
                "rsi": (c.get("technicalIndicators") or {}).get("rsi"),
                "trend": (c.get("technicalIndicators") or {}).get("trend"),
            }
            for c in coins
        ],
        indent=2,
    )
    system_prompt = (
        "You are a light-hearted crypto trend analyst, but be clear about risk. From the "
        "coins given, respond in JSON: {\"hotPick\": {\"symbol\": \"...\", \"reason\": \"...\"}, "
        "\"risingStar\": {...}, \"safeHaven\": {...}, \"reasoning\": \"2-3 sentences on the market\"}"
    )
    try:
        parsed = await _ask(system_prompt, listing, temperature=0.8, max_tokens=600)
    except Exception as e:
        logger.error("Recommendation generation failed: %s", e)
        parsed = None

    parsed = parsed or {}
    by_symbol = {c["symbol"]: c for c in coins}
    result = {}
    for position, slot in enumerate(("hotPick", "risingStar", "safeHaven")):
        choice = parsed.get(slot) or {}
        coin = by_symbol.get(str(choice.get("symbol", "")).upper())
        if coin is None:
            coin = coins[position] if position < len(coins) else None
        result[slot] = {**coin, "reason": choice.get("reason", "")} if coin else None
    result["reasoning"] = parsed.get("reasoning") or "Picks based on today's market data."
    result["disclaimer"] = DISCLAIMER
    return result
