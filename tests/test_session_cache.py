from datetime import timedelta
from uuid import uuid4

from mealshare_api.services.commerce.session_cache import CommerceSessionCache


class _Monotonic:
    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


def test_set_then_get_returns_token() -> None:
    cache = CommerceSessionCache(ttl=timedelta(seconds=60), clock=_Monotonic())
    user_id = uuid4()

    cache.set(user_id, "session-1")

    assert cache.get(user_id) == "session-1"
    assert cache.get(str(user_id)) == "session-1"


def test_entry_expires_after_ttl_and_can_be_replaced() -> None:
    clock = _Monotonic()
    cache = CommerceSessionCache(ttl=timedelta(seconds=60), clock=clock)
    user_id = uuid4()
    cache.set(user_id, "session-1")

    clock.value += 59
    assert cache.get(user_id) == "session-1"

    clock.value += 1
    assert cache.get(user_id) is None
    assert len(cache) == 0

    cache.set(user_id, "session-2")
    assert cache.get(user_id) == "session-2"


def test_last_write_wins_and_clear() -> None:
    cache = CommerceSessionCache(ttl=timedelta(seconds=60), clock=_Monotonic())
    first, second = uuid4(), uuid4()

    cache.set(first, "a")
    cache.set(first, "b")
    cache.set(second, "c")
    assert cache.get(first) == "b"

    cache.clear(first)
    assert cache.get(first) is None
    assert cache.get(second) == "c"

    cache.clear_all()
    assert len(cache) == 0


def test_clear_unknown_user_is_noop() -> None:
    cache = CommerceSessionCache(ttl=timedelta(seconds=60), clock=_Monotonic())

    cache.clear(uuid4())

    assert len(cache) == 0
