"""Request and response dataclasses for the chatrelay provider layer.

These types form the contract between the request handlers and the LiteLLM
wrapper.  All fields are immutable (``frozen=True``) and validated at
construction time so callers get a fast, explicit error rather than a cryptic
downstream failure.
"""

from dataclasses import dataclass, field
from typing import Any

from chatrelay.errors import ValidationError

_VALID_ROLES: frozenset[str] = frozenset({"system", "user", "assistant", "tool", "function"})


@dataclass(frozen=True)
class CompletionRequest:
    """Parameters for a single completion call.

    Args:
        model: Registry model id, e.g. ``"gpt-4"`` or ``"deepseek-chat"``.
        messages: Conversation history.  Each dict must contain ``"role"`` and
            ``"content"`` keys.  Role must be one of: system, user, assistant,
            tool, function.
        temperature: Sampling temperature in ``[0.0, 2.0]``.  Defaults to ``0.7``.
        max_tokens: Maximum tokens to generate.  ``None`` defers to the
            model's context limit.
        stream: When ``True``, :meth:`ProviderClient.generate` yields tokens
            as they arrive.  When ``False``, a single chunk with the full
            response is yielded.

    Raises:
        ValidationError: If any field fails validation.
    """

    model: str
    messages: list[dict[str, str]]
    temperature: float = 0.7
    max_tokens: int | None = None
    stream: bool = False

    # Sentinel to detect that __post_init__ has run; field excluded from repr.
    _validated: bool = field(default=False, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.model.strip():
            raise ValidationError("model must be a non-empty string")

        if not self.messages:
            raise ValidationError("messages must not be empty")

        for i, msg in enumerate(self.messages):
            if "role" not in msg or "content" not in msg:
                raise ValidationError(
                    f"messages[{i}] must contain both 'role' and 'content' keys"
                )
            if msg["role"] not in _VALID_ROLES:
                raise ValidationError(
                    f"messages[{i}] has invalid role '{msg['role']}'; "
                    f"must be one of {sorted(_VALID_ROLES)}"
                )

        if not 0.0 <= self.temperature <= 2.0:
            raise ValidationError(f"temperature must be in [0.0, 2.0], got {self.temperature}")

        if self.max_tokens is not None and self.max_tokens <= 0:
            raise ValidationError(f"max_tokens must be a positive integer, got {self.max_tokens}")

        # Mark validated without triggering FrozenInstanceError
        object.__setattr__(self, "_validated", True)


@dataclass(frozen=True)
class CompletionChunk:
    """A single unit of output from a completion call.

    For streaming requests each token (or small group of tokens) arrives as its
    own chunk.  For non-streaming requests a single chunk carries the full
    response.  The final chunk in a stream always has ``finish_reason`` set.

    Attributes:
        content: Text content for this chunk (may be empty for the final chunk).
        finish_reason: Stop reason reported by the provider (e.g. ``"stop"``,
            ``"length"``).  ``None`` for intermediate chunks.
        usage: Token counts ``{"input_tokens": N, "output_tokens": M}``.
        model: Resolved model name as reported by the provider.
    """

    content: str
    finish_reason: str | None = None
    usage: dict[str, int] | None = None
    model: str | None = None


@dataclass(frozen=True)
class ChatResult:
    """Collected response of a non-streaming chat call.

    Attributes:
        content: Complete generated text.
        model: Registry id of the model that answered (differs from the
            requested one when a fallback model was used).
        input_tokens: Prompt tokens.
        output_tokens: Completion tokens.
        cost: Estimated USD cost from the model registry.
        timestamp: ISO-8601 UTC time the response was assembled.
        finish_reason: Provider stop reason, when reported.
    """

    content: str
    model: str
    input_tokens: int
    output_tokens: int
    cost: float
    timestamp: str
    finish_reason: str | None = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def usage_dict(self) -> dict[str, Any]:
        return {
            "promptTokens": self.input_tokens,
            "completionTokens": self.output_tokens,
            "totalTokens": self.total_tokens,
        }
