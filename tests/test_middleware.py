"""Middleware tests: request ID, rate limiting, CORS, error handling."""

from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from lifedrop.main import create_app


class _FakePipeline:
    def __init__(self, counts: dict[str, int]) -> None:
        self._counts = counts
        self._key = ""

    def incr(self, key: str) -> None:
        self._key = key
        self._counts[key] = self._counts.get(key, 0) + 1

    def expire(self, key: str, seconds: int) -> None:
        pass

    async def execute(self) -> list[Any]:
        return [self._counts[self._key], True]


class _FakeRedis:
    def __init__(self) -> None:
        self.counts: dict[str, int] = {}

    def pipeline(self) -> _FakePipeline:
        return _FakePipeline(self.counts)


@pytest.mark.asyncio
async def test_request_id_generated(client: AsyncClient) -> None:
    """Request ID is auto-generated when not provided."""
    response = await client.get("/health")
    assert len(response.headers["x-request-id"]) == 32


@pytest.mark.asyncio
async def test_request_id_preserved(client: AsyncClient) -> None:
    """Custom request ID is echoed back in response."""
    response = await client.get("/health", headers={"X-Request-Id": "test-abc-123"})
    assert response.headers["x-request-id"] == "test-abc-123"


@pytest.mark.asyncio
async def test_rate_limit_disabled_without_redis(client: AsyncClient) -> None:
    """No Redis configured means no counting and no rate limit headers."""
    for _ in range(3):
        response = await client.get("/api/bloodtypes")
        assert response.status_code == 200
    assert "x-ratelimit-limit" not in response.headers


@pytest.mark.asyncio
async def test_rate_limit_blocks_excess(client: AsyncClient, monkeypatch) -> None:
    """101st request in a window returns 429 with Retry-After header."""
    fake = _FakeRedis()
    monkeypatch.setattr("lifedrop.middleware.rate_limit.get_optional_redis", lambda: fake)

    for _ in range(100):
        response = await client.get("/api/bloodtypes")
        assert response.status_code == 200
    assert response.headers["x-ratelimit-remaining"] == "0"
    assert response.headers["x-ratelimit-limit"] == "100"

    response = await client.get("/api/bloodtypes")
    assert response.status_code == 429
    assert response.headers["retry-after"] == "60"
    assert response.json() == {"detail": "Too many requests. Try again later."}


@pytest.mark.asyncio
async def test_health_exempt_from_rate_limit(client: AsyncClient, monkeypatch) -> None:
    """Health endpoints never touch the limiter."""
    fake = _FakeRedis()
    monkeypatch.setattr("lifedrop.middleware.rate_limit.get_optional_redis", lambda: fake)
    for _ in range(150):
        response = await client.get("/health")
        assert response.status_code == 200
    assert fake.counts == {}


@pytest.mark.asyncio
async def test_cors_preflight(client: AsyncClient) -> None:
    """CORS preflight answers for the configured frontend origin."""
    response = await client.options(
        "/api/requests/public",
        headers={
            "Origin": "http://localhost:5500",
            "Access-Control-Request-Method": "GET",
        },
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "http://localhost:5500"


@pytest.mark.asyncio
async def test_404_returns_json(client: AsyncClient) -> None:
    """Unknown paths return 404 with JSON body."""
    response = await client.get("/nonexistent-path")
    assert response.status_code == 404
    assert response.json() == {"detail": "Not Found"}


@pytest.mark.asyncio
async def test_validation_error_is_400(client: AsyncClient) -> None:
    """Malformed bodies come back as a 400 with a readable detail."""
    response = await client.post("/api/login", json={"email": "someone@example.com"})
    assert response.status_code == 400
    data = response.json()
    assert data["detail"].startswith("password:")
    assert data["errors"][0]["loc"] == ["body", "password"]


@pytest.mark.asyncio
async def test_500_returns_json(client: AsyncClient) -> None:
    """Unhandled errors become a generic 500 without internals."""
    app = create_app()

    @app.get("/boom")
    async def boom() -> None:
        raise RuntimeError("secret internals")

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        response = await ac.get("/boom")

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error"}
    assert "secret" not in response.text
