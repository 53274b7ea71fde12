"""Live OpenRouter model catalog mapped into :class:`~chatrelay.catalog.registry.Model`.

The catalog is fetched per request and never merged into the static
registry.  External entries are parsed leniently: every field is optional,
unparsable prices count as zero, and one bad entry never fails the batch.
"""

from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from chatrelay.catalog.registry import Model, Provider
from chatrelay.core.retry import is_transient, with_retry
from chatrelay.errors import AuthError, ProviderUnavailableError, RateLimitError

_log = structlog.get_logger(__name__)

_PROVIDER = "openrouter"
_DEFAULT_CONTEXT_LENGTH = 4096
# OpenRouter quotes prices per million tokens.
_TOKENS_PER_PRICE_UNIT = 1_000_000


class OpenRouterPricing(BaseModel):
    model_config = ConfigDict(extra="ignore")

    prompt: float = 0.0
    completion: float = 0.0

    @field_validator("prompt", "completion", mode="before")
    @classmethod
    def _coerce_price(cls, value: Any) -> float:
        try:
            price = float(value)
        except (TypeError, ValueError):
            return 0.0
        return price if price >= 0 else 0.0


class OpenRouterModel(BaseModel):
    """One entry of the ``GET /models`` response."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    name: str | None = None
    description: str | None = None
    context_length: int | None = None
    pricing: OpenRouterPricing | None = None

    @field_validator("pricing", mode="before")
    @classmethod
    def _pricing_object_or_none(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None

    @field_validator("context_length", mode="before")
    @classmethod
    def _positive_context_or_none(cls, value: Any) -> int | None:
        try:
            length = int(value)
        except (TypeError, ValueError):
            return None
        return length if length > 0 else None


def _infer_capabilities(name: str, description: str) -> frozenset[str]:
    name_lower = name.lower()
    desc_lower = description.lower()
    capabilities: set[str] = set()

    if "code" in name_lower or "coder" in name_lower or "code" in desc_lower:
        capabilities.add("code")
    if "vision" in name_lower or "multimodal" in name_lower or "image" in desc_lower:
        capabilities.add("multimodal")
    if "research" in name_lower or "web" in name_lower or "search" in desc_lower:
        capabilities.update({"research", "web"})
    if "code" not in capabilities:
        capabilities.update({"analysis", "creative"})
    if "reasoning" in name_lower or "reason" in desc_lower:
        capabilities.add("reasoning")
    return frozenset(capabilities)


def to_model(entry: OpenRouterModel) -> Model:
    """Convert one OpenRouter entry into the gateway's :class:`Model` shape."""
    pricing = entry.pricing or OpenRouterPricing()
    name = entry.name or entry.id.split("/")[-1] or entry.id
    description = entry.description or ""
    return Model(
        id=entry.id,
        name=name,
        provider=Provider.OPENROUTER,
        max_tokens=entry.context_length or _DEFAULT_CONTEXT_LENGTH,
        cost_per_token=(pricing.prompt + pricing.completion) / 2 / _TOKENS_PER_PRICE_UNIT,
        capabilities=_infer_capabilities(name, description),
        description=description or f"{name} via OpenRouter",
    )


def parse_catalog(payload: Any) -> list[Model]:
    """Map a raw ``GET /models`` JSON payload into models, sorted by name.

    Entries that are not objects or lack an ``id`` are skipped and logged.
    """
    raw_entries = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(raw_entries, list):
        _log.warning("openrouter_catalog_missing_data", payload_type=type(payload).__name__)
        return []

    models: list[Model] = []
    for index, raw in enumerate(raw_entries):
        try:
            entry = OpenRouterModel.model_validate(raw)
        except ValidationError as exc:
            _log.warning(
                "openrouter_entry_skipped",
                index=index,
                error_count=exc.error_count(),
            )
            continue
        models.append(to_model(entry))

    models.sort(key=lambda model: model.name.lower())
    return models


async def fetch_openrouter_models(
    base_url: str,
    api_key: str | None = None,
    timeout: float = 20.0,
    *,
    max_retries: int = 2,
    base_delay: float = 1.0,
    client: httpx.AsyncClient | None = None,
) -> list[Model]:
    """Fetch and map the live OpenRouter catalog.

    Args:
        base_url: API root, e.g. ``"https://openrouter.ai/api/v1"``.
        api_key: Optional bearer token; the public listing works without one.
        timeout: Per-attempt HTTP timeout in seconds.
        max_retries: Retries on network errors and 5xx responses.
        base_delay: Backoff base in seconds.
        client: Injected HTTP client (tests).  A private one is created and
            closed when omitted.

    Raises:
        RateLimitError: OpenRouter answered 429.
        AuthError: OpenRouter rejected the API key (401 / 403).
        ProviderUnavailableError: Network failure or any other non-2xx
            status after retries.
    """
    url = base_url.rstrip("/") + "/models"
    headers = {"Accept": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"

    async def _get(http: httpx.AsyncClient) -> Any:
        try:
            response = await http.get(url, headers=headers, timeout=timeout)
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(
                message=f"{_PROVIDER} is unreachable: {exc}",
                provider=_PROVIDER,
                original_error=exc,
            ) from exc
        if response.status_code == 429:
            raise RateLimitError(
                message=f"{_PROVIDER} rate limit exceeded",
                provider=_PROVIDER,
            )
        if response.status_code in (401, 403):
            raise AuthError(
                message=f"Authentication failed for {_PROVIDER}: HTTP {response.status_code}",
                provider=_PROVIDER,
            )
        if response.is_error:
            raise ProviderUnavailableError(
                message=f"{_PROVIDER} returned HTTP {response.status_code}",
                provider=_PROVIDER,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderUnavailableError(
                message=f"{_PROVIDER} returned a non-JSON body",
                provider=_PROVIDER,
                original_error=exc,
            ) from exc

    if client is not None:
        payload = await with_retry(
            lambda: _get(client), max_retries, base_delay, retry_on=is_transient
        )
    else:
        async with httpx.AsyncClient() as http:
            payload = await with_retry(
                lambda: _get(http), max_retries, base_delay, retry_on=is_transient
            )

    models = parse_catalog(payload)
    _log.info("openrouter_catalog_fetched", count=len(models))
    return models
