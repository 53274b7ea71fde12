"""Exception hierarchy for chatrelay.

Every failure the orchestration layer can surface is one of these typed
exceptions, so request handlers map them to HTTP responses without
inspecting raw LiteLLM or HTTP internals.

Hierarchy::

    RelayError
    ├── ValidationError          malformed / missing input        (400)
    ├── TimeoutError             deadline exceeded                (408)
    ├── ConfigurationError       credentials / settings absent    (503)
    └── ProviderError            any other upstream failure       (500)
        ├── RateLimitError       throttling or exhausted quota    (429)
        ├── AuthError            credentials rejected             (500)
        ├── ProviderUnavailableError  5xx / network failure       (500)
        └── MalformedStreamPartError  unparsable stream line      (500)
"""


class RelayError(Exception):
    """Base exception for all chatrelay errors.

    Attributes:
        message: Human-readable error description.
        provider: Provider name (e.g. "openai", "deepseek").  ``None`` when
            the provider could not be determined.
        original_error: The upstream exception that caused this error, if any.
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        self.message = message
        self.provider = provider
        self.original_error = original_error
        super().__init__(message)


class ValidationError(RelayError):
    """Raised for malformed or missing input.

    Detected before any provider call and never retried.
    """


class ConfigurationError(RelayError):
    """Raised when required credentials or settings are absent.

    Fails fast: never retried.
    """


class TimeoutError(RelayError):  # noqa: A001 – intentionally shadows the built-in
    """Raised when a deadline or provider request timeout is exceeded."""


class ProviderError(RelayError):
    """Raised for upstream failures that fit no narrower category."""


class RateLimitError(ProviderError):
    """Raised when the provider signals throttling or exhausted quota (HTTP 429 / 402).

    Attributes:
        retry_after: Seconds to wait before retrying, when the provider
            supplies a ``Retry-After`` header.  ``None`` if unavailable.
    """

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        provider: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, provider=provider, original_error=original_error)
        self.retry_after = retry_after


class AuthError(ProviderError):
    """Raised when the provider rejects the configured credentials (HTTP 401 / 403)."""


class ProviderUnavailableError(ProviderError):
    """Raised when the provider is down or unreachable (HTTP 5xx / network error)."""


class MalformedStreamPartError(ProviderError):
    """Raised when a streamed line cannot be parsed as a stream part.

    Attributes:
        line: The offending line, as decoded text.
    """

    def __init__(self, message: str, line: str = "") -> None:
        super().__init__(message)
        self.line = line
