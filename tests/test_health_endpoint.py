import pytest
from httpx import ASGITransport, AsyncClient


@pytest.mark.asyncio
async def test_health_endpoints(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        root = await client.get("/healthz")
        versioned = await client.get("/api/v1/healthz")
        ready = await client.get("/api/v1/readyz")

    assert root.status_code == 200
    assert root.json()["status"] == "ok"
    assert root.json()["version"] == "0.1.0"
    assert versioned.json() == {"status": "ok"}
    assert ready.json() == {"status": "ready"}
