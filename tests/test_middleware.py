"""Middleware tests: request ID, rate limiting, CORS, error handling."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from redis.exceptions import RedisError

from ctrack.middleware.error_handler import setup_error_handlers
from ctrack.participation.errors import DuplicateParticipationError, StoreUnavailableError


def _fake_redis(count: int | None = None, error: Exception | None = None) -> MagicMock:
    """Redis double whose pipeline reports ``count`` for INCR, or raises ``error``."""
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[count, True], side_effect=error)
    redis = MagicMock()
    redis.pipeline.return_value = pipe
    return redis


@pytest.mark.asyncio
async def test_request_id_generated(client: AsyncClient) -> None:
    """Request ID is auto-generated when not provided."""
    response = await client.get("/health")
    assert "x-request-id" in response.headers
    assert len(response.headers["x-request-id"]) == 36  # UUID format


@pytest.mark.asyncio
async def test_request_id_preserved(client: AsyncClient) -> None:
    """Custom request ID is echoed back in response."""
    response = await client.get("/health", headers={"X-Request-Id": "test-abc-123"})
    assert response.headers["x-request-id"] == "test-abc-123"


@pytest.mark.asyncio
async def test_no_rate_limit_without_redis(client: AsyncClient) -> None:
    """With Redis disabled no rate limit headers are sent."""
    response = await client.get("/api/v1/challenges")
    assert response.status_code == 200
    assert "x-ratelimit-limit" not in response.headers


@pytest.mark.asyncio
async def test_rate_limit_headers(client: AsyncClient, monkeypatch: pytest.MonkeyPatch) -> None:
    """Rate limit headers are present on non-exempt endpoints."""
    monkeypatch.setattr("ctrack.middleware.rate_limit.get_optional_redis", lambda: _fake_redis(count=1))
    response = await client.get("/api/v1/challenges")
    assert response.headers["x-ratelimit-limit"] == "100"
    assert response.headers["x-ratelimit-remaining"] == "99"


@pytest.mark.asyncio
async def test_rate_limit_blocks_excess(client: AsyncClient, monkeypatch: pytest.MonkeyPatch) -> None:
    """101st request in the window returns 429 with Retry-After header."""
    monkeypatch.setattr("ctrack.middleware.rate_limit.get_optional_redis", lambda: _fake_redis(count=101))
    response = await client.get("/api/v1/challenges")
    assert response.status_code == 429
    assert "retry-after" in response.headers
    assert "detail" in response.json()


@pytest.mark.asyncio
async def test_rate_limit_fails_open(client: AsyncClient, monkeypatch: pytest.MonkeyPatch) -> None:
    """A Redis failure lets the request through."""
    monkeypatch.setattr(
        "ctrack.middleware.rate_limit.get_optional_redis",
        lambda: _fake_redis(error=RedisError("down")),
    )
    response = await client.get("/api/v1/challenges")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_health_exempt_from_rate_limit(client: AsyncClient, monkeypatch: pytest.MonkeyPatch) -> None:
    """Health endpoint is exempt from rate limiting."""
    monkeypatch.setattr("ctrack.middleware.rate_limit.get_optional_redis", lambda: _fake_redis(count=10_000))
    response = await client.get("/health")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_cors_preflight(client: AsyncClient) -> None:
    """CORS preflight returns access-control-allow-origin for configured origin."""
    response = await client.options(
        "/health",
        headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "GET",
        },
    )
    assert response.headers["access-control-allow-origin"] == "http://localhost:5173"


@pytest.mark.asyncio
async def test_404_returns_json(client: AsyncClient) -> None:
    """Unknown paths return 404 with JSON body."""
    response = await client.get("/nonexistent-path")
    assert response.status_code == 404
    assert response.headers["content-type"] == "application/json"
    assert response.json()["detail"] == "Not Found"


def _app_raising(exc: Exception) -> FastAPI:
    app = FastAPI()
    setup_error_handlers(app)

    @app.get("/boom")
    async def boom() -> None:
        raise exc

    return app


@pytest.mark.asyncio
async def test_store_unavailable_maps_to_503() -> None:
    """StoreUnavailableError becomes a retryable 503."""
    app = _app_raising(StoreUnavailableError("check_in", TimeoutError()))
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/boom")
    assert response.status_code == 503
    assert response.headers["retry-after"] == "1"
    assert response.json() == {"detail": "Service temporarily unavailable, please retry"}


@pytest.mark.asyncio
async def test_participation_error_status() -> None:
    """Participation rule violations carry their own status code."""
    app = _app_raising(DuplicateParticipationError(1, 2))
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/boom")
    assert response.status_code == 409
    assert response.json() == {"detail": "You are already participating in this challenge"}


@pytest.mark.asyncio
async def test_unhandled_error_returns_json() -> None:
    """Unexpected exceptions return a generic 500 JSON body."""
    app = _app_raising(RuntimeError("kaboom"))
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        response = await ac.get("/boom")
    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error"}
