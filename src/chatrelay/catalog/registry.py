"""Static model catalog with lookup, filtering, cost estimation and recommendation.

The registry is built once at import time and is read-only afterwards, so it
is shared across requests without locking.  Models fetched dynamically from
OpenRouter (:mod:`chatrelay.catalog.openrouter`) use the same
:class:`Model` shape but are never added to it.
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Provider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    DEEPSEEK = "deepseek"
    OPENROUTER = "openrouter"


@dataclass(frozen=True)
class Model:
    """A model the gateway can route to.

    Attributes:
        id: Unique identifier, e.g. ``"gpt-4"`` or ``"deepseek-chat"``.
        name: Display name.
        provider: Vendor serving the model.
        max_tokens: Provider context limit.
        cost_per_token: USD per token, input and output priced alike.
        capabilities: Free-form tags such as ``"code-generation"``.
        description: Human-readable summary.

    Raises:
        ValueError: If ``max_tokens`` is not positive or ``cost_per_token``
            is negative.
    """

    id: str
    name: str
    provider: Provider
    max_tokens: int
    cost_per_token: float
    capabilities: frozenset[str] = field(default_factory=frozenset)
    description: str = ""

    def __post_init__(self) -> None:
        if self.max_tokens <= 0:
            raise ValueError(f"max_tokens must be positive, got {self.max_tokens}")
        if self.cost_per_token < 0:
            raise ValueError(f"cost_per_token must be non-negative, got {self.cost_per_token}")
        # Accept any iterable of tags but always store a frozenset.
        object.__setattr__(self, "capabilities", frozenset(self.capabilities))
        object.__setattr__(self, "provider", Provider(self.provider))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "provider": self.provider.value,
            "maxTokens": self.max_tokens,
            "costPerToken": self.cost_per_token,
            "capabilities": sorted(self.capabilities),
            "description": self.description,
        }


STATIC_MODELS: tuple[Model, ...] = (
    # OpenAI
    Model(
        id="gpt-4",
        name="GPT-4",
        provider=Provider.OPENAI,
        max_tokens=8192,
        cost_per_token=0.00003,
        capabilities=frozenset({"text-generation", "code-generation", "analysis", "reasoning"}),
        description="OpenAI's most capable model, strong at complex reasoning",
    ),
    Model(
        id="gpt-4-turbo",
        name="GPT-4 Turbo",
        provider=Provider.OPENAI,
        max_tokens=128000,
        cost_per_token=0.00001,
        capabilities=frozenset({"text-generation", "code-generation", "analysis", "long-context"}),
        description="Optimised GPT-4 with an extended context window",
    ),
    Model(
        id="gpt-3.5-turbo",
        name="GPT-3.5 Turbo",
        provider=Provider.OPENAI,
        max_tokens=4096,
        cost_per_token=0.000002,
        capabilities=frozenset({"text-generation", "code-generation", "chat"}),
        description="Fast, inexpensive model for most tasks",
    ),
    # Anthropic
    Model(
        id="claude-3-opus",
        name="Claude 3 Opus",
        provider=Provider.ANTHROPIC,
        max_tokens=200000,
        cost_per_token=0.000015,
        capabilities=frozenset({"text-generation", "analysis", "reasoning", "long-context"}),
        description="Anthropic's most powerful model, excellent for analysis",
    ),
    Model(
        id="claude-3-sonnet",
        name="Claude 3 Sonnet",
        provider=Provider.ANTHROPIC,
        max_tokens=200000,
        cost_per_token=0.000003,
        capabilities=frozenset({"text-generation", "code-generation", "analysis", "long-context"}),
        description="Balance between performance and cost",
    ),
    Model(
        id="claude-3-haiku",
        name="Claude 3 Haiku",
        provider=Provider.ANTHROPIC,
        max_tokens=200000,
        cost_per_token=0.00000025,
        capabilities=frozenset({"text-generation", "code-generation", "fast-response"}),
        description="Fast, inexpensive model for simple tasks",
    ),
    # DeepSeek
    Model(
        id="deepseek-chat",
        name="DeepSeek V3",
        provider=Provider.DEEPSEEK,
        max_tokens=64000,
        cost_per_token=0.00000014,
        capabilities=frozenset(
            {"text-generation", "code-generation", "analysis", "reasoning", "long-context"}
        ),
        description="DeepSeek V3, strong at code generation and reasoning",
    ),
    Model(
        id="deepseek-coder",
        name="DeepSeek Coder",
        provider=Provider.DEEPSEEK,
        max_tokens=16000,
        cost_per_token=0.00000014,
        capabilities=frozenset({"code-generation", "code-analysis", "debugging"}),
        description="Specialised for code generation and analysis",
    ),
)

DEFAULT_MODEL = "gpt-4"
FALLBACK_MODEL = "claude-3-sonnet"

# (keywords, preferred model id) in priority order; first match wins.
_RECOMMENDATION_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("code", "programming"), "gpt-4"),
    (("analysis", "research"), "claude-3-opus"),
    (("chat", "conversation"), "claude-3-sonnet"),
)


class ModelRegistry:
    """Immutable, ordered collection of :class:`Model` records.

    Args:
        models: Catalog entries in display order.  Ids must be unique.
        default_model_id: Model returned by :meth:`recommend_model` when no
            rule matches or the preferred model is absent.  Must be present.
        fallback_model_id: Secondary model advertised to callers.  Optional;
            ``None`` when absent from *models*.

    Raises:
        ValueError: On duplicate ids or a missing default model.
    """

    def __init__(
        self,
        models: Iterable[Model],
        default_model_id: str = DEFAULT_MODEL,
        fallback_model_id: str = FALLBACK_MODEL,
    ) -> None:
        self._models: tuple[Model, ...] = tuple(models)
        self._by_id: dict[str, Model] = {}
        for model in self._models:
            if model.id in self._by_id:
                raise ValueError(f"duplicate model id '{model.id}'")
            self._by_id[model.id] = model

        if default_model_id not in self._by_id:
            raise ValueError(f"default model '{default_model_id}' is not in the registry")
        self._default = self._by_id[default_model_id]
        self._fallback = self._by_id.get(fallback_model_id)

    @property
    def models(self) -> tuple[Model, ...]:
        return self._models

    @property
    def default_model(self) -> Model:
        return self._default

    @property
    def fallback_model(self) -> Model | None:
        return self._fallback

    def __len__(self) -> int:
        return len(self._models)

    def __iter__(self) -> Iterator[Model]:
        return iter(self._models)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._by_id

    def get_model_by_id(self, model_id: str) -> Model | None:
        return self._by_id.get(model_id)

    def get_models_by_provider(self, provider: Provider | str) -> list[Model]:
        try:
            wanted = Provider(provider)
        except ValueError:
            return []
        return [model for model in self._models if model.provider is wanted]

    def get_model_capabilities(self, model_id: str) -> frozenset[str]:
        model = self._by_id.get(model_id)
        return model.capabilities if model is not None else frozenset()

    def estimate_cost(self, model_id: str, input_tokens: int, output_tokens: int) -> float:
        """Estimate the USD cost of a call.

        Returns ``0`` when the model is unknown; callers decide whether to
        display that as "$0" or "unknown".
        """
        model = self._by_id.get(model_id)
        if model is None:
            return 0
        return (input_tokens + output_tokens) * model.cost_per_token

    def recommend_model(self, task_description: str) -> Model:
        """Pick a model for a free-text task description.

        Case-insensitive keyword heuristic: code/programming, then
        analysis/research, then chat/conversation, otherwise the default
        model.  Never raises.
        """
        task = task_description.lower()
        for keywords, model_id in _RECOMMENDATION_RULES:
            if any(keyword in task for keyword in keywords):
                return self._by_id.get(model_id, self._default)
        return self._default


registry = ModelRegistry(STATIC_MODELS)
