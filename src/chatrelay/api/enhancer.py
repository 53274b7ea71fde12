"""POST /api/enhancer: stream an improved version of the user's prompt.

The provider stream is framed as data-stream parts and normalized back to
plain text fragments, so the client receives only the improved prompt.
"""

import uuid
from collections.abc import AsyncIterator
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse

from chatrelay.api.dependencies import (
    error_response,
    get_provider,
    read_json_object,
    require_message,
)
from chatrelay.config import settings
from chatrelay.core.streaming import normalize, to_data_stream
from chatrelay.core.timeouts import TIMEOUT_CONFIG, with_deadline
from chatrelay.errors import RelayError
from chatrelay.providers import CompletionChunk, CompletionRequest, ProviderClient

router = APIRouter(prefix="/api", tags=["enhancer"])

_log = structlog.get_logger(__name__)


def build_enhancer_prompt(message: str) -> str:
    return (
        "I want you to improve the user prompt that is wrapped in "
        "`<original_prompt>` tags.\n"
        "\n"
        "IMPORTANT: Only respond with the improved prompt and nothing else!\n"
        "\n"
        "<original_prompt>\n"
        f"{message}\n"
        "</original_prompt>"
    )


@router.post("/enhancer", response_model=None)
async def enhancer(
    request: Request,
    provider: ProviderClient = Depends(get_provider),
) -> StreamingResponse | JSONResponse:
    """Stream the improved prompt as ``text/plain``.

    Failures before the first byte map to JSON error responses (400 / 408 /
    429 / 503 / 500).  Once streaming has started the status is already sent,
    so later failures are logged and simply end the body.
    """
    request_id = f"enhancer-{uuid.uuid4().hex[:12]}"
    headers = {"X-Request-ID": request_id}
    log = _log.bind(request_id=request_id, model=settings.default_chat_model)

    try:
        message = require_message(await read_json_object(request))
        completion_request = CompletionRequest(
            model=settings.default_chat_model,
            messages=[{"role": "user", "content": build_enhancer_prompt(message)}],
            stream=True,
        )
        log.info("enhancer_request_start")
        chunks = await with_deadline(
            provider.open_stream(completion_request),
            TIMEOUT_CONFIG.enhancer,
            "Enhancer request timeout",
            cancel_on_timeout=True,
        )
    except RelayError as exc:
        log.error("enhancer_request_error", error_type=type(exc).__name__, error=exc.message)
        return error_response(exc, headers)

    return StreamingResponse(
        _relay(chunks, log),
        media_type="text/plain; charset=utf-8",
        headers={**headers, "Cache-Control": "no-cache"},
    )


async def _relay(chunks: AsyncIterator[CompletionChunk], log: Any) -> AsyncIterator[bytes]:
    fragments = 0
    try:
        async for fragment in normalize(to_data_stream(chunks)):
            if fragment:
                fragments += 1
                yield fragment
    except RelayError as exc:
        log.error("enhancer_stream_error", error_type=type(exc).__name__, error=exc.message)
    finally:
        log.info("enhancer_request_complete", fragments=fragments)
