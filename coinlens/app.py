"""FastAPI application entry point for the CoinLens API."""

import logging
import sys

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from coinlens.config import settings
from coinlens.errors import register_error_handlers
from coinlens.services.cache import CacheStore
from coinlens.services.persistence import CacheTable, create_engine

# Structured logging: JSON for production, human-readable for local
if settings.is_production:
    logging.basicConfig(
        level=logging.INFO,
        format='{"time":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","message":"%(message)s"}',
        stream=sys.stdout,
    )
else:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

logger = logging.getLogger(__name__)


def create_app(database_url: str | None = None) -> FastAPI:
    app = FastAPI(title="CoinLens API", version="1.0.0")

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Security headers
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response: Response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    # Centralized error handlers
    register_error_handlers(app)

    from coinlens.routes.admin import router as admin_router
    from coinlens.routes.crypto import router as crypto_router
    from coinlens.routes.health import router as health_router
    from coinlens.routes.warmup import router as warmup_router

    app.include_router(health_router)
    app.include_router(crypto_router)
    app.include_router(warmup_router)
    app.include_router(admin_router)

    @app.on_event("startup")
    async def _startup() -> None:
        missing = settings.validate()
        if missing:
            logger.warning("Missing env vars (AI features or warm-up may fail): %s", ", ".join(missing))

        # One engine, table client, store and HTTP client for the process
        engine = create_engine(database_url or settings.database_url, echo=settings.database_echo)
        table = CacheTable(engine)
        await table.create_schema()
        app.state.cache_table = table
        app.state.cache_store = CacheStore(table)
        app.state.http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
        logger.info("Cache table ready (%s)", engine.dialect.name)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await app.state.http_client.aclose()
        await app.state.cache_table.engine.dispose()

    return app


app = create_app()
