"""GET /api/models: the live OpenRouter catalog in the registry's model shape."""

from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import APIRouter
from fastapi.responses import JSONResponse
from opentelemetry import trace
from opentelemetry.trace import StatusCode

from chatrelay.catalog import fetch_openrouter_models
from chatrelay.config import settings
from chatrelay.core.timeouts import TIMEOUT_CONFIG, with_deadline
from chatrelay.errors import RelayError

router = APIRouter(prefix="/api", tags=["models"])

_log = structlog.get_logger(__name__)
_tracer = trace.get_tracer(__name__)


@router.get("/models")
async def list_models() -> JSONResponse:
    """Fetch the OpenRouter catalog under the integration deadline.

    Returns ``{models, count, timestamp}``; any failure yields 500 with an
    empty ``models`` list so clients can still render.
    """
    api_key = (
        settings.openrouter_api_key.get_secret_value()
        if settings.openrouter_api_key is not None
        else None
    )

    with _tracer.start_as_current_span("gateway.models") as span:
        try:
            models = await with_deadline(
                fetch_openrouter_models(
                    settings.openrouter_base_url,
                    api_key,
                    timeout=TIMEOUT_CONFIG.integration,
                    max_retries=settings.llm_max_retries,
                    base_delay=settings.llm_retry_base_delay,
                ),
                TIMEOUT_CONFIG.integration,
                "OpenRouter catalog request timeout",
                cancel_on_timeout=True,
            )
        except RelayError as exc:
            span.record_exception(exc)
            span.set_status(StatusCode.ERROR, exc.message)
            _log.error("models_fetch_error", error_type=type(exc).__name__, error=exc.message)
            content: dict[str, Any] = {"error": "Failed to fetch models", "models": []}
            if settings.expose_error_details:
                content["message"] = exc.message
            return JSONResponse(status_code=500, content=content)

        span.set_attribute("catalog.count", len(models))

    return JSONResponse(
        content={
            "models": [model.to_dict() for model in models],
            "count": len(models),
            "timestamp": datetime.now(UTC).isoformat(),
        }
    )
