"""Redis-backed cache for non-streaming chat responses.

The cache is best-effort: a Redis failure is logged and treated as a miss
(or a skipped write), never surfaced to the caller.
"""

import base64
import json
from typing import Any

import structlog
from opentelemetry import trace
from redis.asyncio import Redis
from redis.exceptions import RedisError

_log = structlog.get_logger(__name__)
_tracer = trace.get_tracer(__name__)


def cache_key(model: str, message: str) -> str:
    """``chat:<model>:<base64(message)>``."""
    encoded = base64.b64encode(message.encode("utf-8")).decode("ascii")
    return f"chat:{model}:{encoded}"


class ResponseCache:
    """Get / set JSON chat payloads keyed by model and message.

    Args:
        client: An ``redis.asyncio.Redis`` client (``decode_responses`` may be
            either setting).
        ttl: Expiry in seconds for stored entries.
    """

    def __init__(self, client: Redis, ttl: int = 3600) -> None:
        self._client = client
        self._ttl = ttl

    @classmethod
    def from_url(cls, url: str, ttl: int = 3600) -> "ResponseCache":
        return cls(Redis.from_url(url, socket_timeout=5), ttl=ttl)

    async def get(self, model: str, message: str) -> dict[str, Any] | None:
        key = cache_key(model, message)
        with _tracer.start_as_current_span("cache.get") as span:
            try:
                raw = await self._client.get(key)
            except (RedisError, OSError) as exc:
                _log.warning("cache_get_failed", model=model, error=str(exc))
                return None
            span.set_attribute("cache.hit", raw is not None)

        if raw is None:
            return None
        try:
            payload = json.loads(raw)
        except ValueError:
            _log.warning("cache_entry_corrupt", model=model)
            return None
        return payload if isinstance(payload, dict) else None

    async def set(self, model: str, message: str, payload: dict[str, Any]) -> None:
        key = cache_key(model, message)
        with _tracer.start_as_current_span("cache.set"):
            try:
                await self._client.set(key, json.dumps(payload), ex=self._ttl)
            except (RedisError, OSError) as exc:
                _log.warning("cache_set_failed", model=model, error=str(exc))

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()
