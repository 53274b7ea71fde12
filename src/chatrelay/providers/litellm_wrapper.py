"""LiteLLM wrapper with structured error handling, observability, and retry logic.

LiteLLM already handles multi-provider normalisation, so this module focuses
on what the gateway adds on top:

* Resolution of registry models to LiteLLM model strings and API keys
* Typed exception hierarchy (:mod:`chatrelay.errors`)
* OpenTelemetry spans using GenAI semantic conventions
* Structured logging via structlog with a per-request correlation ID
* Exponential-backoff retry (:func:`chatrelay.core.retry.with_retry`) on
  transient connection failures only
* Fallback to models from other providers when the requested one is
  rate-limited or out of quota
"""

import dataclasses
import logging
import time
import uuid
from collections.abc import AsyncGenerator, AsyncIterator, Mapping
from datetime import UTC, datetime
from typing import Any

import litellm
import structlog
from opentelemetry import trace
from opentelemetry.trace import StatusCode

from chatrelay.catalog.registry import Model, ModelRegistry, Provider, registry
from chatrelay.core.retry import is_transient, with_retry
from chatrelay.errors import (
    AuthError,
    ConfigurationError,
    ProviderError,
    ProviderUnavailableError,
    RateLimitError,
    RelayError,
    TimeoutError,
    ValidationError,
)
from chatrelay.providers.models import ChatResult, CompletionChunk, CompletionRequest

# ---------------------------------------------------------------------------
# Module-level setup
# ---------------------------------------------------------------------------

# Suppress LiteLLM's own verbose logging; we emit our own structured logs.
logging.getLogger("LiteLLM").setLevel(logging.WARNING)
logging.getLogger("LiteLLM Router").setLevel(logging.WARNING)
logging.getLogger("LiteLLM Proxy").setLevel(logging.WARNING)

_log = structlog.get_logger(__name__)
_tracer = trace.get_tracer(__name__)

# Registry ids whose provider API name differs.
_ANTHROPIC_API_NAMES: dict[str, str] = {
    "claude-3-opus": "claude-3-opus-20240229",
    "claude-3-sonnet": "claude-3-sonnet-20240229",
    "claude-3-haiku": "claude-3-haiku-20240307",
}

# Tried in order, skipping providers already attempted or without a key.
FALLBACK_MODELS: tuple[str, ...] = (
    "deepseek-chat",
    "gpt-3.5-turbo",
    "claude-3-haiku",
    "claude-3-sonnet",
)

_QUOTA_MARKERS: tuple[str, ...] = ("quota", "insufficient", "billing", "payment", "credit")


# ---------------------------------------------------------------------------
# Provider client
# ---------------------------------------------------------------------------


class ProviderClient:
    """Provider-agnostic LLM client built on LiteLLM.

    Requests name a registry model id; the client resolves it to the right
    LiteLLM model string and API key, then adds typed errors, retry logic,
    OpenTelemetry instrumentation, and structured logging.

    Example::

        client = ProviderClient(api_keys={"deepseek": "sk-..."})
        request = CompletionRequest(
            model="deepseek-chat",
            messages=[{"role": "user", "content": "Hello"}],
            stream=True,
        )
        async for chunk in client.generate(request):
            print(chunk.content, end="", flush=True)

    Args:
        api_keys: API key per provider name (``"openai"``, ``"anthropic"``,
            ``"deepseek"``, ``"openrouter"``).  Missing or empty keys mark
            the provider as unconfigured.
        timeout: Per-request timeout in seconds passed to LiteLLM.
        max_retries: Retries after the first attempt for transient failures
            (:class:`~chatrelay.errors.ProviderUnavailableError` and generic
            :class:`~chatrelay.errors.ProviderError`).  Validation,
            configuration, auth, timeout and rate-limit errors are raised
            immediately.
        retry_base_delay: Backoff base in seconds; doubles per retry.
        model_registry: Catalog used to resolve model ids and estimate cost.
    """

    def __init__(
        self,
        api_keys: Mapping[str, str | None] | None = None,
        timeout: int = 60,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        model_registry: ModelRegistry = registry,
    ) -> None:
        self._api_keys = {name: key for name, key in (api_keys or {}).items() if key}
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._registry = model_registry

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def configuration_status(self) -> dict[str, bool]:
        """Which providers have a key, plus an overall ``configured`` flag."""
        status = {provider.value: provider.value in self._api_keys for provider in Provider}
        status["configured"] = self.is_configured()
        return status

    def is_configured(self) -> bool:
        return any(provider.value in self._api_keys for provider in Provider)

    def resolve_model(self, model_id: str) -> Model:
        """Look up *model_id* in the registry.

        Raises:
            ValidationError: The model is not in the registry.
        """
        model = self._registry.get_model_by_id(model_id)
        if model is None:
            raise ValidationError(f"Unsupported model: {model_id}")
        return model

    def available_models(self) -> list[dict[str, Any]]:
        return [model.to_dict() for model in self._registry]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(
        self,
        request: CompletionRequest,
    ) -> AsyncGenerator[CompletionChunk, None]:
        """Generate a completion via LiteLLM.

        Works for both streaming and non-streaming modes; the caller always
        consumes the same async iterator interface.

        Args:
            request: Validated completion parameters.

        Yields:
            CompletionChunk: One chunk per token (streaming) or one chunk for
            the full response (non-streaming).

        Raises:
            ValidationError: Unknown model id.
            ConfigurationError: No API key for the model's provider.
            RateLimitError: Provider returned HTTP 429 / 402.
            AuthError: API key rejected (HTTP 401 / 403).
            TimeoutError: Request exceeded the configured timeout.
            ProviderUnavailableError: Provider down or unreachable (5xx / network).
        """
        request_id = str(uuid.uuid4())
        start_time = time.monotonic()

        with _tracer.start_as_current_span("llm.generate") as span:
            span.set_attribute("gen_ai.request.model", request.model)
            span.set_attribute("gen_ai.request.temperature", request.temperature)
            span.set_attribute("llm.stream", request.stream)
            if request.max_tokens is not None:
                span.set_attribute("gen_ai.request.max_tokens", request.max_tokens)

            log = _log.bind(request_id=request_id, model=request.model, stream=request.stream)
            log.info("llm_request_start", temperature=request.temperature)
            provider: str | None = None

            try:
                model = self.resolve_model(request.model)
                provider = model.provider.value
                span.set_attribute("gen_ai.system", model.provider.value)
                params = self._to_litellm_format(request, model)

                if request.stream:
                    response = await self._call_litellm(params, model)
                    async for chunk in self._iter_stream(response, model):
                        yield chunk
                else:
                    yield await self._generate_non_streaming(params, model)

            except RelayError as exc:
                span.record_exception(exc)
                span.set_status(StatusCode.ERROR, exc.message)
                log.error(
                    "llm_request_error",
                    error_type=type(exc).__name__,
                    error=exc.message,
                    provider=exc.provider,
                )
                raise

            except Exception as exc:
                mapped = self._map_error(exc, provider)
                span.record_exception(exc)
                span.set_status(StatusCode.ERROR, str(exc))
                log.error(
                    "llm_request_error",
                    error_type=type(mapped).__name__,
                    error=str(exc),
                )
                raise mapped from exc

            finally:
                duration_ms = round((time.monotonic() - start_time) * 1000, 2)
                log.info("llm_request_complete", duration_ms=duration_ms)

    async def open_stream(self, request: CompletionRequest) -> AsyncIterator[CompletionChunk]:
        """Establish a streaming call and return its chunk iterator.

        Unlike :meth:`generate`, the connection (including retries) happens
        when this coroutine is awaited, so a caller can put a deadline on
        "provider started answering" separately from consuming the body.
        """
        model = self.resolve_model(request.model)
        params = self._to_litellm_format(dataclasses.replace(request, stream=True), model)
        with _tracer.start_as_current_span("llm.open_stream") as span:
            span.set_attribute("gen_ai.system", model.provider.value)
            span.set_attribute("gen_ai.request.model", model.id)
            try:
                response = await self._call_litellm(params, model)
            except RelayError as exc:
                span.record_exception(exc)
                span.set_status(StatusCode.ERROR, exc.message)
                raise
        _log.info("llm_stream_opened", model=model.id)
        return self._iter_stream(response, model)

    async def chat(self, request: CompletionRequest) -> ChatResult:
        """Run a non-streaming chat call and collect a :class:`ChatResult`.

        When the requested model is rate-limited or out of quota, models from
        :data:`FALLBACK_MODELS` are tried once each, skipping providers
        already attempted and providers without an API key.  If every option
        fails the most recent error is raised.
        """
        requested = self.resolve_model(request.model)
        tried: set[Provider] = {requested.provider}
        try:
            return await self._chat_once(request, requested)
        except RateLimitError as exc:
            last_error: RelayError = exc

        for fallback_id in FALLBACK_MODELS:
            fallback = self._registry.get_model_by_id(fallback_id)
            if fallback is None or fallback.provider in tried:
                continue
            if fallback.provider.value not in self._api_keys:
                continue
            tried.add(fallback.provider)
            _log.warning(
                "llm_fallback",
                requested_model=requested.id,
                fallback_model=fallback.id,
                error=last_error.message,
            )
            try:
                return await self._chat_once(request, fallback)
            except RelayError as fallback_exc:
                last_error = fallback_exc

        raise last_error

    async def count_tokens(self, text: str, model: str) -> int:
        """Estimate the token count for *text* using LiteLLM's token counter.

        Falls back to a word-count approximation when the model is
        unsupported.

        Returns:
            Estimated token count (always at least 1).
        """
        try:
            return litellm.token_counter(model=model, text=text)
        except Exception as exc:
            _log.warning(
                "token_counting_failed",
                model=model,
                error=str(exc),
                fallback="word_count_approximation",
            )
            return max(1, round(len(text.split()) * 1.3))

    # ------------------------------------------------------------------
    # Internal generation helpers
    # ------------------------------------------------------------------

    async def _chat_once(self, request: CompletionRequest, model: Model) -> ChatResult:
        content = ""
        finish_reason: str | None = None
        usage: dict[str, int] | None = None

        async for chunk in self.generate(dataclasses.replace(request, model=model.id, stream=False)):
            content += chunk.content
            if chunk.finish_reason:
                finish_reason = chunk.finish_reason
            if chunk.usage:
                usage = chunk.usage

        if usage is not None:
            input_tokens = usage.get("input_tokens", 0)
            output_tokens = usage.get("output_tokens", 0)
        else:
            prompt = "\n".join(message["content"] for message in request.messages)
            input_tokens = await self.count_tokens(prompt, model.id)
            output_tokens = await self.count_tokens(content, model.id) if content else 0

        return ChatResult(
            content=content,
            model=model.id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=self._registry.estimate_cost(model.id, input_tokens, output_tokens),
            timestamp=datetime.now(UTC).isoformat(),
            finish_reason=finish_reason,
        )

    async def _iter_stream(self, response: Any, model: Model) -> AsyncGenerator[CompletionChunk, None]:
        """Yield chunks from an open streaming response.

        Errors during iteration are mapped to gateway types but are *not*
        retried (resuming a partial stream is unsafe).
        """
        with _tracer.start_as_current_span("llm.api_call") as span:
            span.set_attribute("call_type", "streaming")
            try:
                async for raw_chunk in response:
                    chunk = self._parse_chunk(raw_chunk)
                    if chunk.content or chunk.finish_reason:
                        if chunk.usage:
                            span.set_attribute(
                                "gen_ai.usage.input_tokens",
                                chunk.usage.get("input_tokens", 0),
                            )
                            span.set_attribute(
                                "gen_ai.usage.output_tokens",
                                chunk.usage.get("output_tokens", 0),
                            )
                        yield chunk
            except RelayError:
                raise
            except Exception as exc:
                raise self._map_error(exc, model.provider.value) from exc

    async def _generate_non_streaming(self, params: dict[str, Any], model: Model) -> CompletionChunk:
        """Fetch a complete response from a non-streaming LiteLLM call."""
        with _tracer.start_as_current_span("llm.api_call") as span:
            span.set_attribute("call_type", "non_streaming")

            response = await self._call_litellm(params, model)
            chunk = self._parse_response(response)

            if chunk.usage:
                span.set_attribute("gen_ai.usage.input_tokens", chunk.usage.get("input_tokens", 0))
                span.set_attribute(
                    "gen_ai.usage.output_tokens", chunk.usage.get("output_tokens", 0)
                )
            if chunk.finish_reason:
                span.set_attribute("gen_ai.response.finish_reasons", chunk.finish_reason)

            return chunk

    async def _call_litellm(self, params: dict[str, Any], model: Model) -> Any:
        """Call ``litellm.acompletion`` with exponential-backoff retry.

        Errors are mapped to gateway types *before* the retry predicate sees
        them, so :func:`~chatrelay.core.retry.is_transient` decides on the
        typed error.
        """
        provider = model.provider.value

        async def _attempt() -> Any:
            try:
                return await litellm.acompletion(timeout=self._timeout, **params)
            except Exception as exc:
                raise self._map_error(exc, provider) from exc

        return await with_retry(
            _attempt,
            self._max_retries,
            self._retry_base_delay,
            retry_on=is_transient,
        )

    # ------------------------------------------------------------------
    # Format conversion
    # ------------------------------------------------------------------

    def _to_litellm_format(self, request: CompletionRequest, model: Model) -> dict[str, Any]:
        """Convert a :class:`CompletionRequest` to ``litellm.acompletion`` kwargs.

        Raises:
            ConfigurationError: No API key for the model's provider.
        """
        provider = model.provider.value
        api_key = self._api_keys.get(provider)
        if api_key is None:
            raise ConfigurationError(f"{provider} API key is not configured", provider=provider)

        params: dict[str, Any] = {
            "model": self._litellm_model(model),
            "messages": request.messages,
            "temperature": request.temperature,
            "stream": request.stream,
            "api_key": api_key,
        }
        if request.max_tokens is not None:
            params["max_tokens"] = min(request.max_tokens, model.max_tokens)
        return params

    @staticmethod
    def _litellm_model(model: Model) -> str:
        if model.provider is Provider.OPENAI:
            return model.id
        if model.provider is Provider.ANTHROPIC:
            return f"anthropic/{_ANTHROPIC_API_NAMES.get(model.id, model.id)}"
        return f"{model.provider.value}/{model.id}"

    def _parse_chunk(self, raw: Any) -> CompletionChunk:
        """Convert a LiteLLM streaming chunk to :class:`CompletionChunk`."""
        content = ""
        finish_reason: str | None = None
        usage: dict[str, int] | None = None

        if hasattr(raw, "choices") and raw.choices:
            choice = raw.choices[0]
            delta = getattr(choice, "delta", None)
            if delta is not None:
                content = getattr(delta, "content", None) or ""
            finish_reason = getattr(choice, "finish_reason", None)

        raw_usage = getattr(raw, "usage", None)
        if raw_usage is not None:
            usage = {
                "input_tokens": getattr(raw_usage, "prompt_tokens", 0),
                "output_tokens": getattr(raw_usage, "completion_tokens", 0),
            }

        return CompletionChunk(
            content=content,
            finish_reason=finish_reason,
            usage=usage,
            model=getattr(raw, "model", None),
        )

    def _parse_response(self, raw: Any) -> CompletionChunk:
        """Convert a LiteLLM non-streaming response to :class:`CompletionChunk`."""
        content: str = raw.choices[0].message.content or ""
        finish_reason: str | None = raw.choices[0].finish_reason
        raw_usage = getattr(raw, "usage", None)
        usage: dict[str, int] | None = None
        if raw_usage is not None:
            usage = {
                "input_tokens": raw_usage.prompt_tokens,
                "output_tokens": raw_usage.completion_tokens,
            }
        return CompletionChunk(
            content=content,
            finish_reason=finish_reason,
            usage=usage,
            model=raw.model,
        )

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    def _map_error(self, error: Exception, provider: str | None) -> RelayError:
        """Map a LiteLLM exception to a typed gateway error.

        ===================================  ================================
        LiteLLM exception                    Gateway exception
        ===================================  ================================
        ``litellm.RateLimitError``           :class:`RateLimitError`
        HTTP 402 / quota or billing message  :class:`RateLimitError`
        ``litellm.AuthenticationError``      :class:`AuthError`
        ``litellm.Timeout``                  :class:`TimeoutError`
        ``litellm.BadRequestError``          :class:`ValidationError`
        ``litellm.ServiceUnavailableError``  :class:`ProviderUnavailableError`
        ``litellm.APIConnectionError``       :class:`ProviderUnavailableError`
        ``litellm.APIError`` (catch-all)     :class:`ProviderUnavailableError`
        anything else                        :class:`ProviderError`
        ===================================  ================================
        """
        # Already mapped; avoid double-wrapping (e.g. raised during streaming).
        if isinstance(error, RelayError):
            return error

        if isinstance(error, litellm.RateLimitError):
            return RateLimitError(
                message=str(error),
                provider=provider,
                retry_after=getattr(error, "retry_after", None),
                original_error=error,
            )

        if getattr(error, "status_code", None) == 402 or any(
            marker in str(error).lower() for marker in _QUOTA_MARKERS
        ):
            return RateLimitError(
                message=f"{provider} quota exhausted or payment required: {error}",
                provider=provider,
                original_error=error,
            )

        if isinstance(error, litellm.AuthenticationError):
            return AuthError(
                message=f"Authentication failed for {provider}: {error}",
                provider=provider,
                original_error=error,
            )

        if isinstance(error, litellm.Timeout):
            return TimeoutError(
                message=f"Request to {provider} timed out: {error}",
                provider=provider,
                original_error=error,
            )

        # BadRequestError is the parent of ContextWindowExceededError in LiteLLM.
        if isinstance(error, litellm.BadRequestError):
            return ValidationError(
                message=f"Invalid request to {provider}: {error}",
                provider=provider,
                original_error=error,
            )

        if isinstance(
            error,
            litellm.ServiceUnavailableError | litellm.APIConnectionError | litellm.APIError,
        ):
            return ProviderUnavailableError(
                message=f"{provider} is unavailable: {error}",
                provider=provider,
                original_error=error,
            )

        return ProviderError(
            message=f"Unexpected error from {provider}: {error}",
            provider=provider,
            original_error=error,
        )
