"""Custom exceptions and centralized FastAPI error handlers."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class CoinLensError(Exception):
    """Base exception with HTTP status code."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class UpstreamError(CoinLensError):
    """A market-data or AI provider call failed."""

    def __init__(self, message: str):
        super().__init__(message, status_code=502)


class UnauthorizedError(CoinLensError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, status_code=401)


class CacheBackendError(CoinLensError):
    """The cache table could not be inspected.

    Only the admin surface raises this; regular cache reads and writes
    degrade instead of raising.
    """

    def __init__(self, message: str):
        super().__init__(message, status_code=500)


def register_error_handlers(app: FastAPI) -> None:
    """Register centralized exception handlers on the FastAPI app."""

    @app.exception_handler(CoinLensError)
    async def handle_coinlens_error(_request: Request, exc: CoinLensError):
        if exc.status_code >= 500:
            logger.error("%s: %s", type(exc).__name__, exc)
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code)

    @app.exception_handler(ValueError)
    async def handle_value_error(_request: Request, exc: ValueError):
        return JSONResponse({"error": str(exc)}, status_code=400)

    @app.exception_handler(Exception)
    async def handle_unexpected(_request: Request, exc: Exception):
        logger.exception("Unhandled error: %s", exc)
        return JSONResponse(
            {"error": "Internal server error"},
            status_code=500,
        )
