"""Tests for /health endpoints."""

import asyncio
from collections.abc import AsyncGenerator, Iterator
from dataclasses import replace
from typing import Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from chatrelay.cache import ResponseCache
from chatrelay.config import settings
from chatrelay.core.timeouts import TIMEOUT_CONFIG
from chatrelay.main import app


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def _redis(**ping_kwargs: object) -> AsyncMock:
    mock_redis = AsyncMock()
    mock_redis.ping = AsyncMock(**ping_kwargs)
    mock_redis.aclose = AsyncMock()
    return mock_redis


# ---------------------------------------------------------------------------
# /health
# ---------------------------------------------------------------------------
class TestHealthEndpoint:
    async def test_returns_200(self, client: AsyncClient) -> None:
        response = await client.get("/health")
        assert response.status_code == 200

    async def test_response_structure(self, client: AsyncClient) -> None:
        response = await client.get("/health")
        body = response.json()
        assert body["status"] == "healthy"
        assert "timestamp" in body
        assert body["version"] == settings.app_version
        assert body["environment"] == settings.environment


# ---------------------------------------------------------------------------
# /health/live
# ---------------------------------------------------------------------------
class TestLivenessEndpoint:
    async def test_response_body(self, client: AsyncClient) -> None:
        response = await client.get("/health/live")
        assert response.status_code == 200
        assert response.json()["status"] == "alive"


# ---------------------------------------------------------------------------
# /health/ready
# ---------------------------------------------------------------------------
class TestReadinessEndpoint:
    @pytest.fixture(autouse=True)
    def cleanup_cache(self) -> Iterator[None]:
        """Remove app.state.cache after every test to prevent cross-test leakage."""
        yield
        if hasattr(app.state, "cache"):
            del app.state.cache

    async def test_redis_healthy(self, client: AsyncClient) -> None:
        mock_redis = _redis(return_value=True)
        app.state.cache = ResponseCache(mock_redis)

        response = await client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "ready", "checks": {"redis": "ok"}}
        mock_redis.ping.assert_awaited_once()

    async def test_redis_down_returns_503(self, client: AsyncClient) -> None:
        app.state.cache = ResponseCache(_redis(side_effect=ConnectionError("Redis unreachable")))

        response = await client.get("/health/ready")

        assert response.status_code == 503
        body = response.json()
        assert body["status"] == "unavailable"
        assert body["errors"]["redis"] == "Redis unreachable"

    async def test_slow_ping_returns_503(self, client: AsyncClient, monkeypatch: Any) -> None:
        monkeypatch.setattr(
            "chatrelay.api.health.TIMEOUT_CONFIG", replace(TIMEOUT_CONFIG, default=0.01)
        )

        async def hang() -> bool:
            await asyncio.sleep(1.0)
            return True

        app.state.cache = ResponseCache(_redis(side_effect=hang))

        response = await client.get("/health/ready")

        assert response.status_code == 503
        assert "redis" in response.json()["errors"]

    async def test_cache_disabled_is_ready_without_redis(self, client: AsyncClient) -> None:
        app.state.cache = None

        response = await client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "ready", "checks": {"redis": "disabled"}}
