import base64
import json
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

import mealshare_api.models  # noqa: E402,F401
from mealshare_api.api.dependencies.commerce import (  # noqa: E402
    get_cipher,
    get_commerce_client,
    get_session_cache,
)
from mealshare_api.app import create_app  # noqa: E402
from mealshare_api.db.base import Base  # noqa: E402
from mealshare_api.db.session import get_session  # noqa: E402
from mealshare_api.models.credential import CommerceCredential  # noqa: E402
from mealshare_api.models.help_request import HelpRequest, HelpRequestStatusEnum  # noqa: E402
from mealshare_api.models.points import PointsBalance  # noqa: E402
from mealshare_api.models.user import User  # noqa: E402
from mealshare_api.services.commerce.client import CommerceClient  # noqa: E402
from mealshare_api.services.commerce.session_cache import CommerceSessionCache  # noqa: E402
from mealshare_api.services.commerce.sessions import CommerceSessionResolver  # noqa: E402
from mealshare_api.services.secrets.cipher import SecretCipher  # noqa: E402


FAKE_BASE_URL = "https://get.test/GETServices/services/json"


class FakeCommerceBackend:
    """Scripted stand-in for the GET JSON-RPC endpoints behind ``httpx.MockTransport``.

    Responses are queued per RPC method; the last queued response repeats.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self._responses: dict[str, list[Any]] = {}

    def respond(self, method: str, *envelopes: Any) -> None:
        self._responses[method] = list(envelopes)

    def count(self, method: str) -> int:
        return sum(1 for _, called, _ in self.calls if called == method)

    def params(self, method: str) -> list[dict[str, Any]]:
        return [params for _, called, params in self.calls if called == method]

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        service = request.url.path.rsplit("/", 1)[-1]
        method = body["method"]
        self.calls.append((service, method, body["params"]))

        queue = self._responses.get(method)
        if not queue:
            return httpx.Response(200, json={"exception": f"No fake response scripted for {method}"})
        envelope = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(envelope):
            return envelope(request)
        if isinstance(envelope, httpx.Response):
            return envelope
        return httpx.Response(200, json=envelope)


class FrozenClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def encryption_key() -> str:
    return base64.b64encode(os.urandom(32)).decode("ascii")


@pytest.fixture
def cipher(encryption_key) -> SecretCipher:
    return SecretCipher(key_b64=encryption_key)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def commerce_backend() -> FakeCommerceBackend:
    return FakeCommerceBackend()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest_asyncio.fixture
async def commerce_client(commerce_backend, sleeps):
    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(commerce_backend.handler))
    client = CommerceClient(
        base_url=FAKE_BASE_URL,
        http_client=http_client,
        retries=2,
        backoff_ms=250,
        sleep=fake_sleep,
    )
    try:
        yield client
    finally:
        await http_client.aclose()


@pytest.fixture
def session_cache() -> CommerceSessionCache:
    return CommerceSessionCache(ttl=timedelta(seconds=60))


@pytest.fixture
def session_resolver(commerce_client, session_cache) -> CommerceSessionResolver:
    return CommerceSessionResolver(commerce_client, session_cache)


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """File-backed database so concurrent sessions use separate connections."""

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'mealshare.db'}", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory, commerce_client, session_cache, cipher):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_commerce_client] = lambda: commerce_client
    app.dependency_overrides[get_session_cache] = lambda: session_cache
    app.dependency_overrides[get_cipher] = lambda: cipher

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


async def seed_user(session: AsyncSession, email: str, *, balance: int | None = None, **fields: Any) -> User:
    user = User(email=email, **fields)
    session.add(user)
    await session.flush()
    if balance is not None:
        session.add(PointsBalance(user_id=user.id, balance=balance))
    await session.commit()
    return user


async def seed_credential(
    session: AsyncSession,
    user: User,
    cipher: SecretCipher,
    *,
    device_id: str = "a1b2c3d4e5f60718",
    pin: str = "4321",
) -> CommerceCredential:
    credential = CommerceCredential(
        user_id=user.id,
        encrypted_device_id=cipher.encrypt(device_id),
        encrypted_pin=cipher.encrypt(pin),
    )
    session.add(credential)
    await session.commit()
    return credential


async def seed_request(
    session: AsyncSession,
    requester: User,
    *,
    points: int = 5,
    location: str = "Dining Hall",
    **fields: Any,
) -> HelpRequest:
    request = HelpRequest(
        requester_id=requester.id,
        points_requested=points,
        location=location,
        status=fields.pop("status", HelpRequestStatusEnum.PENDING),
        **fields,
    )
    session.add(request)
    await session.commit()
    return request


@pytest.fixture
def seed() -> Callable[..., Any]:
    """Expose the seeding helpers to test modules without a package import."""

    class _Seed:
        user = staticmethod(seed_user)
        credential = staticmethod(seed_credential)
        request = staticmethod(seed_request)

    return _Seed
