"""
Route tests. Upstream market data and AI calls are mocked; the cache runs
against an in-memory SQLite table with the real clock.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from coinlens.app import create_app
from coinlens.config import settings
from coinlens.dependencies import get_crypto_service
from coinlens.services.cache import CacheStore

MEMORY_DB = "sqlite+aiosqlite:///:memory:"

ANALYSIS = {
    "decision": "BUY",
    "confidence": 70,
    "reasoning": "steady uptrend",
    "keyPoints": [],
    "risks": [],
    "targetPrice": None,
    "timeHorizon": "medium",
    "investmentLevels": {},
}


def _snapshot(symbol: str) -> dict:
    return {"symbol": symbol, "name": symbol.title(), "price": 100.0}


@pytest.fixture
def crypto_service():
    service = AsyncMock()
    service.get_crypto_data.side_effect = lambda symbol: _snapshot(symbol)
    service.get_fear_greed_index.return_value = 40
    service.get_multiple_cryptos.return_value = [
        {"symbol": "btc", "name": "Bitcoin", "current_price": 42000, "price_change_percentage_24h": 1.0,
         "price_change_percentage_7d_in_currency": 6.0, "price_change_percentage_30d_in_currency": 11.0,
         "market_cap": 820e9, "high_24h": 42500, "low_24h": 41500},
        {"symbol": "eth", "name": "Ethereum", "current_price": 2500, "price_change_percentage_24h": -1.0,
         "price_change_percentage_7d_in_currency": -2.0, "market_cap": 300e9},
    ]
    return service


@pytest.fixture
def ai():
    with patch("coinlens.routes.crypto.crypto_ai") as mocked:
        mocked.analyze_crypto = AsyncMock(side_effect=lambda data: dict(ANALYSIS))
        mocked.analyze_long_term_outlook = AsyncMock(return_value={"summary": "long road"})
        mocked.predict_price = AsyncMock(return_value={"day1": {"price": 101.0}})
        mocked.today_recommendations = AsyncMock(return_value={"hotPick": {"symbol": "BTC"}})
        yield mocked


@pytest_asyncio.fixture
async def app(table, crypto_service):
    application = create_app(database_url=MEMORY_DB)
    application.state.cache_table = table
    application.state.cache_store = CacheStore(table)
    application.dependency_overrides[get_crypto_service] = lambda: crypto_service
    return application


@pytest_asyncio.fixture
async def api(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


class TestCryptoRoutes:

    @pytest.mark.asyncio
    async def test_analysis_miss_then_hit(self, api, ai, crypto_service):
        first = await api.get("/crypto/btc")
        second = await api.get("/crypto/BTC")

        assert first.status_code == 200
        assert first.json()["fromCache"] is False
        assert first.json()["recommendation"]["decision"] == "BUY"
        assert first.json()["recommendation"]["longTermOutlook"] == {"summary": "long road"}
        assert first.json()["fearGreedIndex"] == 40

        body = second.json()
        assert body["fromCache"] is True
        assert "cachedAt" in body
        assert body["symbol"] == "BTC"
        assert ai.analyze_crypto.await_count == 1
        assert crypto_service.get_crypto_data.await_count == 1

    @pytest.mark.asyncio
    async def test_outlook_failure_does_not_fail_analysis(self, api, ai):
        ai.analyze_long_term_outlook.side_effect = RuntimeError("model overloaded")

        resp = await api.get("/crypto/ETH")

        assert resp.status_code == 200
        assert resp.json()["recommendation"]["longTermOutlook"] is None

    @pytest.mark.asyncio
    async def test_analysis_still_served_when_cache_write_fails(self, api, app, ai):
        app.state.cache_table.upsert = AsyncMock(side_effect=ConnectionError("read-only"))

        resp = await api.get("/crypto/SOL")

        assert resp.status_code == 200
        assert resp.json()["fromCache"] is False

    @pytest.mark.asyncio
    async def test_prediction_is_cached(self, api, ai):
        first = await api.get("/crypto/predict/doge")
        second = await api.get("/crypto/predict/DOGE")

        assert first.json()["symbol"] == "DOGE"
        assert first.json()["prediction"] == {"day1": {"price": 101.0}}
        assert second.json()["fromCache"] is True
        assert ai.predict_price.await_count == 1

    @pytest.mark.asyncio
    async def test_recommendations_are_cached(self, api, ai, crypto_service):
        first = await api.get("/crypto/recommendations")
        second = await api.get("/crypto/recommendations")

        assert first.status_code == 200
        assert [coin["symbol"] for coin in first.json()["coins"]] == ["BTC", "ETH"]
        assert second.json()["fromCache"] is True
        assert crypto_service.get_multiple_cryptos.await_count == 1

    @pytest.mark.asyncio
    async def test_recommendations_without_market_data_is_502(self, api, ai, crypto_service):
        crypto_service.get_multiple_cryptos.return_value = []

        resp = await api.get("/crypto/recommendations")

        assert resp.status_code == 502
        assert "unavailable" in resp.json()["error"]

    @pytest.mark.asyncio
    async def test_invalidate_symbol(self, api, ai):
        await api.get("/crypto/BTC")
        await api.get("/crypto/predict/BTC")
        await api.get("/crypto/ETH")

        resp = await api.delete("/crypto/btc/cache")

        assert resp.json() == {"status": "ok", "symbol": "BTC", "deletedCount": 2}
        assert (await api.get("/crypto/BTC")).json()["fromCache"] is False
        assert (await api.get("/crypto/ETH")).json()["fromCache"] is True


class TestWarmup:

    @pytest.fixture(autouse=True)
    def secret(self, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", "s3cret")
        monkeypatch.setattr(settings, "warmup_delay_seconds", 0)

    @pytest.mark.asyncio
    async def test_requires_bearer_secret(self, api, ai):
        assert (await api.get("/crypto-warmup")).status_code == 401
        assert (await api.get("/crypto-warmup", headers={"Authorization": "Bearer nope"})).status_code == 401

    @pytest.mark.asyncio
    async def test_unconfigured_secret_rejects_everything(self, api, ai, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", None)

        resp = await api.get("/crypto-warmup", headers={"Authorization": "Bearer None"})

        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_warms_and_skips_fresh_entries(self, api, app, ai):
        await app.state.cache_store.set_crypto_analysis("BTC", {"price": 1})
        ai.analyze_crypto.side_effect = [dict(ANALYSIS), RuntimeError("model down")] + [dict(ANALYSIS)] * 3

        resp = await api.get("/crypto-warmup", headers={"Authorization": "Bearer s3cret"})

        body = resp.json()
        statuses = {r["symbol"]: r["status"] for r in body["results"]}
        assert statuses == {
            "BTC": "skipped",
            "ETH": "success",
            "DOGE": "failed",
            "XRP": "success",
            "SOL": "success",
            "ADA": "success",
        }
        assert (body["successful"], body["skipped"], body["failed"]) == (4, 1, 1)
        assert (await app.state.cache_store.get_crypto_analysis("ETH"))
        assert not (await app.state.cache_store.get_crypto_analysis("DOGE"))


class TestAdminRoutes:

    @pytest_asyncio.fixture
    async def seeded(self, table):
        now = datetime.now(timezone.utc)
        rows = [
            ("crypto:BTC:full", now + timedelta(hours=6)),
            ("crypto:BTC:prediction", now + timedelta(hours=2)),
            ("crypto:ETH:full", now - timedelta(minutes=5)),
            ("stock:NVDA:news", now + timedelta(minutes=15)),
            ("stock:NVDA:financial", now - timedelta(minutes=1)),
        ]
        for offset, (key, expires_at) in enumerate(rows):
            await table.upsert(key, {"key": key}, expires_at, now - timedelta(hours=3) + timedelta(minutes=offset))
        return now

    @pytest.mark.asyncio
    async def test_status_summary(self, api, seeded):
        body = (await api.get("/admin/cache-status")).json()

        assert body["summary"] == {"total": 5, "valid": 3, "expired": 2, "crypto": 2}
        assert [e["key"] for e in body["validCache"]] == ["stock:NVDA:news", "crypto:BTC:prediction", "crypto:BTC:full"]
        assert {e["symbol"] for e in body["cryptoCache"]} == {"BTC"}
        assert "symbols" not in body

    @pytest.mark.asyncio
    async def test_status_detail_groups_by_identifier(self, api, seeded):
        body = (await api.get("/admin/cache-status", params={"detail": "true"})).json()

        groups = {g["identifier"]: g for g in body["symbols"]}
        assert groups["BTC"]["entries"] == 2
        assert groups["BTC"]["expired"] is False
        assert groups["ETH"]["expired"] is True
        assert groups["NVDA"]["entries"] == 2
        assert {e["key"] for e in body["expiredCache"]} == {"crypto:ETH:full", "stock:NVDA:financial"}

    @pytest.mark.asyncio
    async def test_cleanup_removes_expired(self, api, seeded):
        resp = await api.delete("/admin/cache-status")

        assert resp.json()["deletedCount"] == 2
        summary = (await api.get("/admin/cache-status")).json()["summary"]
        assert summary == {"total": 3, "valid": 3, "expired": 0, "crypto": 2}

    @pytest.mark.asyncio
    async def test_status_backend_failure_is_500(self, api, app):
        app.state.cache_table.count = AsyncMock(side_effect=ConnectionError("db down"))

        resp = await api.get("/admin/cache-status")

        assert resp.status_code == 500
        assert "db down" in resp.json()["error"]

    @pytest.mark.asyncio
    async def test_db_self_test(self, api, table):
        resp = await api.get("/admin/db-test")

        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert await table.count() == 0


def test_ready_with_startup_wiring():
    with TestClient(create_app(database_url=MEMORY_DB)) as client:
        resp = client.get("/ready")

    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
