"""Tests for POST /api/enhancer."""

import asyncio
from collections.abc import AsyncGenerator, AsyncIterator, Iterator
from dataclasses import replace
from typing import Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from chatrelay.api.enhancer import build_enhancer_prompt
from chatrelay.config import settings
from chatrelay.core.timeouts import TIMEOUT_CONFIG
from chatrelay.errors import ProviderError, RateLimitError
from chatrelay.main import app
from chatrelay.providers import CompletionChunk, CompletionRequest, ProviderClient

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _stream(*chunks: CompletionChunk) -> AsyncIterator[CompletionChunk]:
    for chunk in chunks:
        yield chunk


async def _failing_stream(exc: Exception) -> AsyncIterator[CompletionChunk]:
    yield CompletionChunk(content="partial ")
    raise exc


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def provider() -> ProviderClient:
    client = ProviderClient(api_keys={"deepseek": "sk-d"})
    client.open_stream = AsyncMock(  # type: ignore[method-assign]
        return_value=_stream(
            CompletionChunk(content="Better "),
            CompletionChunk(content="prompt", finish_reason="stop"),
        )
    )
    return client


@pytest.fixture(autouse=True)
def install_provider(provider: ProviderClient) -> Iterator[None]:
    """Install the provider on app.state and remove it after every test."""
    app.state.provider = provider
    yield
    if hasattr(app.state, "provider"):
        del app.state.provider


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Prompt template
# ---------------------------------------------------------------------------


def test_prompt_wraps_original_in_tags() -> None:
    prompt = build_enhancer_prompt("make a todo app")

    assert "<original_prompt>\nmake a todo app\n</original_prompt>" in prompt
    assert "Only respond with the improved prompt and nothing else!" in prompt


# ---------------------------------------------------------------------------
# Streaming success
# ---------------------------------------------------------------------------


class TestEnhancerStream:
    async def test_streams_plain_text(self, client: AsyncClient) -> None:
        response = await client.post("/api/enhancer", json={"message": "make a todo app"})

        assert response.status_code == 200
        assert response.text == "Better prompt"
        assert response.headers["content-type"].startswith("text/plain")
        assert response.headers["Cache-Control"] == "no-cache"
        assert response.headers["X-Request-ID"].startswith("enhancer-")

    async def test_provider_receives_wrapped_prompt(
        self, client: AsyncClient, provider: ProviderClient
    ) -> None:
        await client.post("/api/enhancer", json={"message": "make a todo app"})

        (request,) = provider.open_stream.call_args.args
        assert isinstance(request, CompletionRequest)
        assert request.stream is True
        assert request.model == settings.default_chat_model
        assert request.messages == [
            {"role": "user", "content": build_enhancer_prompt("make a todo app")}
        ]

    async def test_empty_chunks_produce_no_output(
        self, client: AsyncClient, provider: ProviderClient
    ) -> None:
        provider.open_stream = AsyncMock(
            return_value=_stream(CompletionChunk(content=""), CompletionChunk(content="x"))
        )

        response = await client.post("/api/enhancer", json={"message": "hi"})

        assert response.text == "x"

    async def test_mid_stream_error_ends_body(
        self, client: AsyncClient, provider: ProviderClient
    ) -> None:
        provider.open_stream = AsyncMock(return_value=_failing_stream(ProviderError("dropped")))

        response = await client.post("/api/enhancer", json={"message": "hi"})

        assert response.status_code == 200
        assert response.text == "partial "

    async def test_undecodable_fragment_ends_body(
        self, client: AsyncClient, provider: ProviderClient, mocker: Any
    ) -> None:
        async def framed(chunks: Any) -> AsyncIterator[bytes]:
            yield b'0:"ok"\n'
            yield b'0:"\xe2\x9c"\n'
            yield b'0:"never"\n'

        mocker.patch("chatrelay.api.enhancer.to_data_stream", new=framed)

        response = await client.post("/api/enhancer", json={"message": "hi"})

        assert response.status_code == 200
        assert response.text == "ok"


# ---------------------------------------------------------------------------
# Errors before the first byte
# ---------------------------------------------------------------------------


class TestEnhancerErrors:
    @pytest.mark.parametrize("body", [{}, {"message": "   "}, {"prompt": "hi"}])
    async def test_missing_message_returns_400(self, client: AsyncClient, body: Any) -> None:
        response = await client.post("/api/enhancer", json=body)

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"

    async def test_invalid_json_returns_400(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/enhancer", content=b"nope", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400

    async def test_deadline_returns_408(
        self, client: AsyncClient, provider: ProviderClient, monkeypatch: Any
    ) -> None:
        monkeypatch.setattr(
            "chatrelay.api.enhancer.TIMEOUT_CONFIG", replace(TIMEOUT_CONFIG, enhancer=0.01)
        )

        async def slow_open(request: CompletionRequest) -> AsyncIterator[CompletionChunk]:
            await asyncio.sleep(1.0)
            return _stream()

        provider.open_stream = slow_open  # type: ignore[method-assign]

        response = await client.post("/api/enhancer", json={"message": "hi"})

        assert response.status_code == 408
        assert response.json() == {
            "error": "Request timeout",
            "message": "Enhancer request timeout",
        }

    async def test_rate_limit_returns_429(
        self, client: AsyncClient, provider: ProviderClient
    ) -> None:
        provider.open_stream = AsyncMock(side_effect=RateLimitError("slow down", retry_after=12))

        response = await client.post("/api/enhancer", json={"message": "hi"})

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "12"

    async def test_missing_key_returns_503(self, client: AsyncClient) -> None:
        app.state.provider = ProviderClient(api_keys={"openai": "sk-o"})

        response = await client.post("/api/enhancer", json={"message": "hi"})

        assert response.status_code == 503
        assert response.json()["error"] == "Service not configured"

    async def test_provider_failure_returns_500(
        self, client: AsyncClient, provider: ProviderClient, monkeypatch: Any
    ) -> None:
        monkeypatch.setattr(settings, "environment", "production")
        provider.open_stream = AsyncMock(side_effect=ProviderError("upstream down"))

        response = await client.post("/api/enhancer", json={"message": "hi"})

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}
