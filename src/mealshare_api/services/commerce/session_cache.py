"""Process-local cache of GET session tokens keyed by user."""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import timedelta
from threading import Lock
from typing import Callable, MutableMapping
from uuid import UUID

from mealshare_api.core.settings import settings


@dataclass(slots=True)
class SessionCacheEntry:
    user_id: str
    token: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class CommerceSessionCache:
    """Amortises ``authenticatePIN`` calls; a miss is always recoverable.

    Entries live for ``ttl`` after insertion. Concurrent writers for the same
    user are allowed and the last write wins, since GET session tokens for one
    device are interchangeable while they overlap.
    """

    def __init__(
        self,
        *,
        ttl: timedelta | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_seconds = (ttl or timedelta(seconds=settings.commerce_session_ttl_seconds)).total_seconds()
        self._clock = clock
        self._entries: MutableMapping[str, SessionCacheEntry] = {}
        self._lock = Lock()

    @staticmethod
    def _key(user_id: UUID | str) -> str:
        return str(user_id)

    def get(self, user_id: UUID | str) -> str | None:
        key = self._key(user_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if not entry.is_valid(self._clock()):
                del self._entries[key]
                return None
            return entry.token

    def set(self, user_id: UUID | str, token: str) -> None:
        key = self._key(user_id)
        entry = SessionCacheEntry(user_id=key, token=token, expires_at=self._clock() + self._ttl_seconds)
        with self._lock:
            self._entries[key] = entry

    def clear(self, user_id: UUID | str) -> None:
        with self._lock:
            self._entries.pop(self._key(user_id), None)

    def clear_all(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["CommerceSessionCache", "SessionCacheEntry"]
