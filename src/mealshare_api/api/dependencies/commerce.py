"""Process-wide GET commerce collaborators exposed as FastAPI dependencies."""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache

from fastapi import Depends

from mealshare_api.core.settings import settings
from mealshare_api.services.commerce.client import CommerceClient
from mealshare_api.services.commerce.session_cache import CommerceSessionCache
from mealshare_api.services.commerce.sessions import CommerceSessionResolver
from mealshare_api.services.secrets.cipher import SecretCipher, get_secret_cipher


@lru_cache(maxsize=1)
def get_commerce_client() -> CommerceClient:
    return CommerceClient(
        base_url=settings.commerce_api_base_url,
        retries=settings.commerce_retry_attempts,
        backoff_ms=settings.commerce_retry_backoff_ms,
        timeout_seconds=settings.commerce_api_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_session_cache() -> CommerceSessionCache:
    return CommerceSessionCache(ttl=timedelta(seconds=settings.commerce_session_ttl_seconds))


def get_cipher() -> SecretCipher:
    return get_secret_cipher()


def get_session_resolver(
    client: CommerceClient = Depends(get_commerce_client),
    cache: CommerceSessionCache = Depends(get_session_cache),
) -> CommerceSessionResolver:
    return CommerceSessionResolver(client, cache)


async def close_commerce_client() -> None:
    """Release the shared HTTP pool; called from the application lifespan."""

    if get_commerce_client.cache_info().currsize:
        await get_commerce_client().aclose()
        get_commerce_client.cache_clear()


__all__ = [
    "close_commerce_client",
    "get_cipher",
    "get_commerce_client",
    "get_session_cache",
    "get_session_resolver",
]
