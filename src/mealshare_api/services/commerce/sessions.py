"""Cache-first GET session acquisition."""

from __future__ import annotations

from typing import Awaitable, Callable, TypeVar
from uuid import UUID

from loguru import logger

from .client import CommerceClient
from .errors import ExternalTransientError
from .session_cache import CommerceSessionCache

T = TypeVar("T")


class CommerceSessionResolver:
    """Hands out GET sessions for a user, re-authenticating only on a cache miss."""

    def __init__(self, client: CommerceClient, cache: CommerceSessionCache) -> None:
        self._client = client
        self._cache = cache

    async def resolve(
        self,
        user_id: UUID | str,
        device_id: str,
        pin: str,
        *,
        force_refresh: bool = False,
    ) -> str:
        if not force_refresh:
            cached = self._cache.get(user_id)
            if cached:
                return cached
        session_id = await self._client.authenticate(device_id, pin)
        self._cache.set(user_id, session_id)
        return session_id

    async def run(
        self,
        user_id: UUID | str,
        device_id: str,
        pin: str,
        operation: Callable[[str], Awaitable[T]],
        *,
        on_refresh: Callable[[], None] | None = None,
    ) -> T:
        """Run ``operation`` with a session, retrying once on a fresh session after a transient failure.

        ``on_refresh`` is called before the retry so callers can report the recovery.
        """

        session_id = await self.resolve(user_id, device_id, pin)
        try:
            return await operation(session_id)
        except ExternalTransientError:
            logger.info("Refreshing GET session after transient failure", user_id=str(user_id))
            self._cache.clear(user_id)
            if on_refresh is not None:
                on_refresh()
            session_id = await self.resolve(user_id, device_id, pin, force_refresh=True)
            return await operation(session_id)

    def invalidate(self, user_id: UUID | str) -> None:
        self._cache.clear(user_id)


__all__ = ["CommerceSessionResolver"]
