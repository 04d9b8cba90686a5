"""Health, readiness and database self-test routes."""

import asyncio
import logging
import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from coinlens.config import settings
from coinlens.dependencies import get_cache_store, get_cache_table
from coinlens.services.cache import CacheStore, Hit
from coinlens.services.llm_client import complete
from coinlens.services.persistence import CacheTable

logger = logging.getLogger(__name__)

router = APIRouter()

SELF_TEST_TTL = 300


@router.get("/ready")
async def ready() -> dict:
    """Lightweight readiness check — no external calls."""
    return {"status": "ok", "service": "coinlens-api", "commit": settings.git_sha}


@router.get("/health")
async def health(table: CacheTable = Depends(get_cache_table)) -> dict:
    """Deep health check that verifies database and AI model connectivity."""
    result = {
        "status": "ok",
        "service": "coinlens-api",
        "commit": settings.git_sha,
        "database": "not_tested",
        "ai": "not_tested",
    }

    try:
        await table.ping()
        result["database"] = "connected"
    except Exception as e:
        logger.exception("Database health check failed")
        result["status"] = "degraded"
        result["database"] = "error"
        result["database_error"] = str(e)

    try:
        response = await asyncio.to_thread(
            complete,
            messages=[{"role": "user", "content": "Say 'hello' and nothing else."}],
            max_tokens=10,
        )
        result["ai"] = "connected"
        result["ai_response"] = response.strip()
    except Exception as e:
        logger.exception("AI model health check failed")
        result["ai"] = "error"
        result["ai_error"] = str(e)

    return result


@router.get("/admin/db-test")
async def db_test(store: CacheStore = Depends(get_cache_store)):
    """Write, read back and delete a short-lived key through the cache store."""
    key = f"test:{time.time_ns()}"
    value = {"test": True}
    tests = []

    written = await store.set(key, value, SELF_TEST_TTL)
    tests.append({"name": "write", "status": "PASS" if written else "FAIL", "key": key})
    if not written:
        tests[-1]["error"] = written.reason
        return JSONResponse({"success": False, "tests": tests}, status_code=500)

    read = await store.get(key)
    read_ok = isinstance(read, Hit) and read.value == value
    tests.append({"name": "read", "status": "PASS" if read_ok else "FAIL"})

    await store.delete(key)
    deleted_ok = not await store.get(key)
    tests.append({"name": "delete", "status": "PASS" if deleted_ok else "FAIL"})

    success = read_ok and deleted_ok
    return JSONResponse({"success": success, "tests": tests}, status_code=200 if success else 500)
