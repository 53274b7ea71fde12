"""POST /api/chat and GET /api/chat.

Single-shot chat against a registry model.  Responses are cached in Redis by
model and message; slow and expensive responses are flagged in the logs.
"""

import time
import uuid
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from opentelemetry import trace
from opentelemetry.trace import StatusCode

from chatrelay.api.dependencies import (
    error_response,
    get_cache,
    get_provider,
    get_timeouts,
    read_json_object,
    require_message,
)
from chatrelay.cache import ResponseCache
from chatrelay.config import settings
from chatrelay.core.timeouts import TIMEOUT_CONFIG, TimeoutRegistry, with_deadline
from chatrelay.errors import RelayError, ValidationError
from chatrelay.providers import CompletionRequest, ProviderClient

router = APIRouter(prefix="/api", tags=["chat"])

_log = structlog.get_logger(__name__)
_tracer = trace.get_tracer(__name__)

SYSTEM_PROMPT = (
    "You are a helpful and knowledgeable AI assistant. You can help with "
    "programming, analysis, code generation and many other tasks. "
    "Answer clearly and professionally."
)
CHAT_TEMPERATURE = 0.7
CHAT_MAX_TOKENS = 4000


def build_messages(message: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": message},
    ]


@router.post("/chat", response_model=None)
async def chat(
    request: Request,
    provider: ProviderClient = Depends(get_provider),
    timeouts: TimeoutRegistry = Depends(get_timeouts),
    cache: ResponseCache | None = Depends(get_cache),
) -> JSONResponse:
    """Answer one user message.

    Request body: ``{"message": str, "model"?: str}``.  The model defaults to
    ``settings.default_chat_model`` and must be a registry id.

    Checks run in order: provider configured (503), JSON body (400), message
    (400), known model (400).  Then the cache is consulted and, on a miss,
    the provider is called under the chat deadline.
    """
    request_id = f"chat-{uuid.uuid4().hex[:12]}"
    start_time = time.monotonic()
    headers = {"X-Request-ID": request_id, "X-Cache-Status": "MISS"}
    log = _log.bind(request_id=request_id)

    with _tracer.start_as_current_span("gateway.chat") as span:
        span.set_attribute("gateway.request_id", request_id)

        if not provider.is_configured():
            log.warning("chat_not_configured")
            span.set_status(StatusCode.ERROR, "no provider configured")
            return JSONResponse(
                status_code=503,
                content={
                    "error": "Service not configured",
                    "message": "No provider API key is configured",
                    "configuration": provider.configuration_status(),
                },
                headers=headers,
            )

        try:
            body = await read_json_object(request)
            message = require_message(body)
            model_id = body.get("model") or settings.default_chat_model
            if not isinstance(model_id, str):
                raise ValidationError("The model field must be a string")
            model = provider.resolve_model(model_id)
        except ValidationError as exc:
            span.set_status(StatusCode.ERROR, exc.message)
            log.info("chat_request_rejected", error=exc.message)
            return error_response(exc, headers)

        log = log.bind(model=model.id)
        span.set_attribute("gen_ai.request.model", model.id)

        if cache is not None:
            cached = await cache.get(model.id, message)
            if cached is not None:
                log.info("chat_cache_hit")
                return JSONResponse(
                    content={**cached, "cached": True, "requestId": request_id},
                    headers={**headers, "X-Cache-Status": "HIT"},
                )

        log.info("chat_request_start")
        slow_key = f"slow:{request_id}"
        timeouts.schedule(
            slow_key,
            lambda: log.warning(
                "slow_chat_response",
                threshold_seconds=settings.slow_response_threshold,
            ),
            settings.slow_response_threshold,
        )

        try:
            completion_request = CompletionRequest(
                model=model.id,
                messages=build_messages(message),
                temperature=CHAT_TEMPERATURE,
                max_tokens=CHAT_MAX_TOKENS,
            )
            result = await with_deadline(
                provider.chat(completion_request),
                TIMEOUT_CONFIG.chat,
                cancel_on_timeout=True,
            )
        except RelayError as exc:
            span.record_exception(exc)
            span.set_status(StatusCode.ERROR, exc.message)
            log.error(
                "chat_request_error",
                error_type=type(exc).__name__,
                error=exc.message,
                provider=exc.provider,
                duration_ms=_elapsed_ms(start_time),
            )
            return error_response(exc, headers, requestId=request_id, timestamp=_now())
        except Exception as exc:
            span.record_exception(exc)
            span.set_status(StatusCode.ERROR, str(exc))
            log.exception("chat_request_failed", duration_ms=_elapsed_ms(start_time))
            return error_response(exc, headers, requestId=request_id, timestamp=_now())
        finally:
            timeouts.cancel(slow_key)

        response: dict[str, Any] = {
            "response": result.content,
            "model": result.model,
            "usage": result.usage_dict(),
            "cost": result.cost,
            "timestamp": result.timestamp,
            "requestId": request_id,
            "cached": False,
        }

        if cache is not None:
            await cache.set(model.id, message, response)

        if result.cost > settings.high_cost_threshold:
            log.warning("high_chat_cost", cost=round(result.cost, 4))

        span.set_attribute("gen_ai.usage.input_tokens", result.input_tokens)
        span.set_attribute("gen_ai.usage.output_tokens", result.output_tokens)
        log.info(
            "chat_request_complete",
            duration_ms=_elapsed_ms(start_time),
            answered_by=result.model,
            usage=response["usage"],
        )
        return JSONResponse(content=response, headers=headers)


@router.get("/chat")
async def chat_info(provider: ProviderClient = Depends(get_provider)) -> JSONResponse:
    """List the static models, provider configuration and available endpoints."""
    return JSONResponse(
        content={
            "models": provider.available_models(),
            "configuration": provider.configuration_status(),
            "endpoints": {
                "chat": "/api/chat",
                "enhancer": "/api/enhancer",
                "models": "/api/models",
                "health": "/health",
            },
        }
    )


def _elapsed_ms(start_time: float) -> float:
    return round((time.monotonic() - start_time) * 1000, 2)


def _now() -> str:
    return datetime.now(UTC).isoformat()
