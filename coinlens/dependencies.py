"""Request dependencies handing out the process-wide clients from ``app.state``."""

import httpx
from fastapi import Request

from coinlens.services.cache import CacheStore
from coinlens.services.crypto_data import CryptoDataService
from coinlens.services.persistence import CacheTable


def get_cache_store(request: Request) -> CacheStore:
    return request.app.state.cache_store


def get_cache_table(request: Request) -> CacheTable:
    return request.app.state.cache_table


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_crypto_service(request: Request) -> CryptoDataService:
    return CryptoDataService(get_http_client(request))
