"""CoinGecko market data client plus the Fear & Greed index.

Free APIs, no key required. When CoinGecko is unreachable or rate-limits us,
``get_crypto_data`` falls back to static mock figures flagged with
``isApiFailure`` so the AI layer can still produce a (clearly labelled)
commentary.
"""

import logging

import httpx

from coinlens.config import settings

logger = logging.getLogger(__name__)

USD_TO_KRW_DEFAULT = 1350

# Ticker symbol -> CoinGecko coin id
SYMBOL_TO_ID = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "DOGE": "dogecoin",
    "XRP": "ripple",
    "ADA": "cardano",
    "SOL": "solana",
    "MATIC": "matic-network",
    "DOT": "polkadot",
    "SHIB": "shiba-inu",
    "AVAX": "avalanche-2",
    "LINK": "chainlink",
    "UNI": "uniswap",
    "LTC": "litecoin",
    "BCH": "bitcoin-cash",
    "ATOM": "cosmos",
    "ETC": "ethereum-classic",
    "XLM": "stellar",
    "ALGO": "algorand",
    "VET": "vechain",
    "ICP": "internet-computer",
}

# Symbols CoinGecko does not cover; always analysed from mock figures
MOCK_ONLY_SYMBOLS = {"IN"}

# Static figures used when the API is unavailable
_FALLBACK = {
    "BTC": {"name": "Bitcoin", "price": 42000, "rank": 1, "high24h": 42500, "low24h": 41500,
            "change24h": 1.5, "change7d": 3.2, "change30d": 8.5, "ath": 69000, "athDate": "2021-11-08",
            "marketCap": 820e9, "volume24h": 28e9, "dominance": 48.5},
    "ETH": {"name": "Ethereum", "price": 2500, "rank": 2, "high24h": 2550, "low24h": 2450,
            "change24h": 2.1, "change7d": 5.3, "change30d": 12.5, "ath": 4900, "athDate": "2021-11-16",
            "marketCap": 300e9, "volume24h": 15e9},
    "DOGE": {"name": "Dogecoin", "price": 0.25, "rank": 10, "high24h": 0.26, "low24h": 0.24,
             "change24h": 3.5, "change7d": 8.2, "change30d": 15.5, "ath": 0.73, "athDate": "2021-05-08",
             "marketCap": 35e9, "volume24h": 2.5e9},
    "IN": {"name": "Infinit", "price": 0.8, "rank": 250, "high24h": 0.84, "low24h": 0.76,
           "change24h": 0.0, "change7d": 0.0, "change30d": 0.0, "ath": 2.5, "athDate": "2021-11-15",
           "marketCap": 80e6, "volume24h": 5e6},
}


def format_large_number(num: float) -> str:
    for threshold, suffix in ((1e12, "T"), (1e9, "B"), (1e6, "M"), (1e3, "K")):
        if num >= threshold:
            return f"{num / threshold:.2f}{suffix}"
    return f"{num:.2f}"


def technical_indicators(high_24h: float, low_24h: float, change_7d: float, change_30d: float) -> dict:
    """Rough indicators from 24h range and 7d/30d momentum.

    RSI is estimated from the 7-day change (real RSI needs 14 daily closes).
    """
    if change_7d > 10:
        rsi = 70 + (change_7d - 10) * 2
    elif change_7d < -10:
        rsi = 30 + (change_7d + 10) * 2
    else:
        rsi = 50 + change_7d * 2
    rsi = min(100.0, max(0.0, rsi))

    if change_7d > 5 and change_30d > 10:
        trend = "BULLISH"
    elif change_7d < -5 and change_30d < -10:
        trend = "BEARISH"
    else:
        trend = "NEUTRAL"

    return {
        "rsi": round(rsi, 1),
        "trend": trend,
        "support": low_24h * 0.98,
        "resistance": high_24h * 1.02,
    }


def mock_crypto_data(symbol: str, note: str | None = None) -> dict:
    """Fallback analysis payload for ``symbol`` built from static figures."""
    symbol = symbol.upper()
    base = _FALLBACK.get(symbol, {
        "name": symbol, "price": 1.0, "rank": None, "high24h": 1.05, "low24h": 0.95,
        "change24h": 0.0, "change7d": 0.0, "change30d": 0.0, "ath": None, "athDate": None,
        "marketCap": 0.0, "volume24h": 0.0,
    })
    price = base["price"]
    return {
        "id": SYMBOL_TO_ID.get(symbol, symbol.lower()),
        "symbol": symbol,
        "name": base["name"],
        "price": price,
        "priceKRW": price * USD_TO_KRW_DEFAULT,
        "marketCap": format_large_number(base["marketCap"]),
        "rank": base["rank"],
        "volume24h": format_large_number(base["volume24h"]),
        "high24h": base["high24h"],
        "low24h": base["low24h"],
        "change24h": base["change24h"],
        "change7d": base["change7d"],
        "change30d": base["change30d"],
        "ath": base["ath"],
        "athDate": base["athDate"],
        "dominance": base.get("dominance"),
        "fearGreedIndex": None,
        "technicalIndicators": technical_indicators(
            base["high24h"], base["low24h"], base["change7d"], base["change30d"]
        ),
        "isApiFailure": True,
        "apiFailureNote": note or (
            f"Live market data for {symbol} is unavailable; "
            "analysis is based on reference figures (prompt-engineering mode)."
        ),
    }


class CryptoDataService:
    """Market data lookups over a shared ``httpx.AsyncClient``."""

    def __init__(self, client: httpx.AsyncClient, base_url: str | None = None):
        self.client = client
        self.base_url = (base_url or settings.coingecko_base_url).rstrip("/")

    @staticmethod
    def coin_id(symbol: str) -> str:
        return SYMBOL_TO_ID.get(symbol.upper(), symbol.lower())

    async def _get_json(self, url: str, params: dict | None = None) -> dict | list:
        resp = await self.client.get(url, params=params)
        resp.raise_for_status()
        return resp.json()

    async def get_exchange_rate(self) -> float:
        """USD -> KRW, via the tether price; defaults on failure."""
        try:
            data = await self._get_json(
                f"{self.base_url}/simple/price", params={"ids": "tether", "vs_currencies": "krw"}
            )
            return float(data["tether"]["krw"])
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            logger.warning("Exchange rate fetch failed, using default: %s", e)
            return USD_TO_KRW_DEFAULT

    async def get_crypto_data(self, symbol: str) -> dict:
        """Full market snapshot for one coin, or mock figures on failure."""
        symbol = symbol.upper()
        if symbol in MOCK_ONLY_SYMBOLS:
            return mock_crypto_data(symbol, note=f"{symbol} has limited API coverage; prompt-engineering analysis only.")

        coin_id = self.coin_id(symbol)
        try:
            data = await self._get_json(
                f"{self.base_url}/coins/{coin_id}",
                params={"community_data": "false", "developer_data": "false", "sparkline": "false"},
            )
            md = data["market_data"]
            price = float(md["current_price"]["usd"])
            high = float(md["high_24h"]["usd"])
            low = float(md["low_24h"]["usd"])
            change_7d = float(md.get("price_change_percentage_7d") or 0)
            change_30d = float(md.get("price_change_percentage_30d") or 0)
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            logger.warning("CoinGecko fetch failed for %s, using mock data: %s", symbol, e)
            return mock_crypto_data(symbol)

        usd_to_krw = await self.get_exchange_rate()
        market_cap = float((md.get("market_cap") or {}).get("usd") or 0)
        volume = float((md.get("total_volume") or {}).get("usd") or 0)
        max_supply = md.get("max_supply")

        dominance = None
        if symbol == "BTC":
            dominance = await self.get_btc_dominance()

        logger.info("Fetched market data for %s", symbol)
        return {
            "id": coin_id,
            "symbol": symbol,
            "name": data.get("name", symbol),
            "price": price,
            "priceKRW": price * usd_to_krw,
            "marketCap": format_large_number(market_cap),
            "marketCapKRW": format_large_number(market_cap * usd_to_krw),
            "rank": data.get("market_cap_rank"),
            "volume24h": format_large_number(volume),
            "volume24hKRW": format_large_number(volume * usd_to_krw),
            "high24h": high,
            "low24h": low,
            "change24h": float(md.get("price_change_percentage_24h") or 0),
            "change7d": change_7d,
            "change30d": change_30d,
            "circulatingSupply": f"{format_large_number(md.get('circulating_supply') or 0)} {symbol}",
            "totalSupply": f"{format_large_number(md.get('total_supply') or 0)} {symbol}",
            "maxSupply": f"{format_large_number(max_supply)} {symbol}" if max_supply else None,
            "ath": (md.get("ath") or {}).get("usd"),
            "athChange": (md.get("ath_change_percentage") or {}).get("usd"),
            "athDate": (md.get("ath_date") or {}).get("usd"),
            "dominance": dominance,
            "fearGreedIndex": None,
            "technicalIndicators": technical_indicators(high, low, change_7d, change_30d),
        }

    async def get_btc_dominance(self) -> float | None:
        try:
            data = await self._get_json(f"{self.base_url}/global")
            return round(float(data["data"]["market_cap_percentage"]["btc"]), 2)
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            logger.warning("Global market data fetch failed: %s", e)
            return None

    async def get_fear_greed_index(self) -> int | None:
        try:
            data = await self._get_json(settings.fear_greed_url)
            return int(data["data"][0]["value"])
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning("Fear & Greed index fetch failed: %s", e)
            return None

    async def get_multiple_cryptos(self, symbols: list[str]) -> list[dict]:
        """Market rows for several coins in one call (empty list on failure)."""
        ids = ",".join(self.coin_id(s) for s in symbols)
        try:
            rows = await self._get_json(
                f"{self.base_url}/coins/markets",
                params={"vs_currency": "usd", "ids": ids, "price_change_percentage": "24h,7d,30d"},
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Multi-coin market fetch failed: %s", e)
            return []
        return rows if isinstance(rows, list) else []
