"""Shared FastAPI dependencies and error-body helpers for the API routers."""

from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

from chatrelay.cache import ResponseCache
from chatrelay.config import settings
from chatrelay.core.timeouts import TimeoutRegistry
from chatrelay.errors import (
    ConfigurationError,
    RateLimitError,
    RelayError,
    TimeoutError,
    ValidationError,
)
from chatrelay.providers import ProviderClient

# ---------------------------------------------------------------------------
# HTTP status and stable error string for each error type
# ---------------------------------------------------------------------------
_ERROR_STATUS: dict[type[RelayError], tuple[int, str]] = {
    ValidationError: (400, "Invalid request"),
    TimeoutError: (408, "Request timeout"),
    RateLimitError: (429, "Rate limit exceeded"),
    ConfigurationError: (503, "Service not configured"),
}
_DEFAULT_STATUS = (500, "Internal server error")


def status_for(exc: Exception) -> tuple[int, str]:
    """Resolve ``(status_code, error)`` by walking the exception's MRO."""
    for cls in type(exc).__mro__:
        if cls in _ERROR_STATUS:
            return _ERROR_STATUS[cls]
    return _DEFAULT_STATUS


def error_response(
    exc: Exception,
    headers: dict[str, str] | None = None,
    **extra: Any,
) -> JSONResponse:
    """Build the ``{"error", "message"?}`` JSON body for *exc*.

    Client errors (4xx) always carry the message.  For 5xx responses the
    message is included only when ``settings.expose_error_details`` is on.
    """
    status_code, error = status_for(exc)
    content: dict[str, Any] = {"error": error}
    message = exc.message if isinstance(exc, RelayError) else str(exc)
    if status_code < 500 or settings.expose_error_details:
        content["message"] = message
    content.update(extra)

    response_headers = dict(headers or {})
    if isinstance(exc, RateLimitError) and exc.retry_after is not None:
        response_headers["Retry-After"] = str(int(exc.retry_after))

    return JSONResponse(status_code=status_code, content=content, headers=response_headers)


# ---------------------------------------------------------------------------
# Request body helpers
# ---------------------------------------------------------------------------


async def read_json_object(request: Request) -> dict[str, Any]:
    """Parse the request body as a JSON object.

    Raises:
        ValidationError: The body is not valid JSON or not an object.
    """
    try:
        body = await request.json()
    except ValueError as exc:
        raise ValidationError("Request body is not valid JSON") from exc
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def require_message(body: dict[str, Any]) -> str:
    message = body.get("message")
    if not isinstance(message, str) or not message.strip():
        raise ValidationError("The message field is required")
    return message


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_provider(request: Request) -> ProviderClient:
    """Return the shared :class:`ProviderClient` from ``app.state``."""
    provider: ProviderClient | None = getattr(request.app.state, "provider", None)
    if provider is None:
        raise HTTPException(status_code=503, detail="Provider not initialised")
    return provider


def get_timeouts(request: Request) -> TimeoutRegistry:
    timeouts: TimeoutRegistry | None = getattr(request.app.state, "timeouts", None)
    if timeouts is None:
        raise HTTPException(status_code=503, detail="Timeout registry not initialised")
    return timeouts


def get_cache(request: Request) -> ResponseCache | None:
    """The response cache, or ``None`` when caching is disabled."""
    return getattr(request.app.state, "cache", None)
