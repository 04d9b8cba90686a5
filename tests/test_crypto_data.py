"""
Tests for the CoinGecko client, using httpx.MockTransport instead of the network.
"""

import httpx
import pytest

from coinlens.services.crypto_data import (
    CryptoDataService,
    format_large_number,
    mock_crypto_data,
    technical_indicators,
)

BASE = "https://coingecko.test/api/v3"

COIN_PAYLOAD = {
    "name": "Ethereum",
    "market_cap_rank": 2,
    "market_data": {
        "current_price": {"usd": 2500.0},
        "high_24h": {"usd": 2600.0},
        "low_24h": {"usd": 2400.0},
        "price_change_percentage_24h": 1.2,
        "price_change_percentage_7d": 6.0,
        "price_change_percentage_30d": 12.0,
        "market_cap": {"usd": 300e9},
        "total_volume": {"usd": 15e9},
        "circulating_supply": 120e6,
        "total_supply": 120e6,
        "max_supply": None,
        "ath": {"usd": 4900.0},
        "ath_change_percentage": {"usd": -49.0},
        "ath_date": {"usd": "2021-11-16T00:00:00Z"},
    },
}


def _service(handler) -> CryptoDataService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CryptoDataService(client, base_url=BASE)


class TestIndicators:

    def test_rsi_is_clamped(self):
        assert technical_indicators(1, 1, 60, 0)["rsi"] == 100.0
        assert technical_indicators(1, 1, -60, 0)["rsi"] == 0.0
        assert technical_indicators(1, 1, 0, 0)["rsi"] == 50.0

    def test_trend(self):
        assert technical_indicators(1, 1, 6, 11)["trend"] == "BULLISH"
        assert technical_indicators(1, 1, -6, -11)["trend"] == "BEARISH"
        assert technical_indicators(1, 1, 6, 0)["trend"] == "NEUTRAL"

    def test_support_and_resistance(self):
        ti = technical_indicators(high_24h=100, low_24h=50, change_7d=0, change_30d=0)

        assert ti["support"] == pytest.approx(49.0)
        assert ti["resistance"] == pytest.approx(102.0)

    def test_format_large_number(self):
        assert format_large_number(820e9) == "820.00B"
        assert format_large_number(1.5e12) == "1.50T"
        assert format_large_number(12.345) == "12.35"


class TestCryptoDataService:

    @pytest.mark.asyncio
    async def test_get_crypto_data_builds_snapshot(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/coins/ethereum"):
                return httpx.Response(200, json=COIN_PAYLOAD)
            if request.url.path.endswith("/simple/price"):
                return httpx.Response(200, json={"tether": {"krw": 1400}})
            return httpx.Response(404)

        data = await _service(handler).get_crypto_data("eth")

        assert data["symbol"] == "ETH"
        assert data["price"] == 2500.0
        assert data["priceKRW"] == 2500.0 * 1400
        assert data["marketCap"] == "300.00B"
        assert data["maxSupply"] is None
        assert data["technicalIndicators"]["trend"] == "BULLISH"
        assert "isApiFailure" not in data

    @pytest.mark.asyncio
    async def test_snapshot_tolerates_null_optional_fields(self):
        market_data = dict(COIN_PAYLOAD["market_data"], ath=None, ath_date=None, ath_change_percentage=None)
        del market_data["market_cap"]
        payload = dict(COIN_PAYLOAD, market_data=market_data)

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/coins/ethereum"):
                return httpx.Response(200, json=payload)
            return httpx.Response(500)

        data = await _service(handler).get_crypto_data("ETH")

        assert data["price"] == 2500.0
        assert data["marketCap"] == "0.00"
        assert data["ath"] is None
        assert data["athDate"] is None

    @pytest.mark.asyncio
    async def test_api_failure_falls_back_to_mock(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"error": "rate limited"})

        data = await _service(handler).get_crypto_data("BTC")

        assert data["isApiFailure"] is True
        assert data["symbol"] == "BTC"
        assert data["price"] == 42000

    @pytest.mark.asyncio
    async def test_mock_only_symbol_skips_network(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        data = await _service(handler).get_crypto_data("IN")

        assert data["isApiFailure"] is True
        assert data["name"] == "Infinit"

    @pytest.mark.asyncio
    async def test_fear_greed_index_failure_is_none(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        assert await _service(handler).get_fear_greed_index() is None

    @pytest.mark.asyncio
    async def test_multiple_cryptos_failure_is_empty(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        assert await _service(handler).get_multiple_cryptos(["BTC", "ETH"]) == []

    @pytest.mark.asyncio
    async def test_multiple_cryptos_non_json_body_is_empty(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>maintenance</html>")

        assert await _service(handler).get_multiple_cryptos(["BTC"]) == []

    @pytest.mark.asyncio
    async def test_multiple_cryptos_requests_mapped_ids(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["ids"] = request.url.params["ids"]
            return httpx.Response(200, json=[{"symbol": "btc"}])

        rows = await _service(handler).get_multiple_cryptos(["BTC", "DOGE"])

        assert rows == [{"symbol": "btc"}]
        assert seen["ids"] == "bitcoin,dogecoin"


def test_unknown_symbol_mock_data():
    data = mock_crypto_data("zzz")

    assert data["symbol"] == "ZZZ"
    assert data["id"] == "zzz"
    assert data["isApiFailure"] is True
