"""Tests for the static model registry (catalog/registry.py)."""

import dataclasses

import pytest

from chatrelay.catalog.registry import (
    DEFAULT_MODEL,
    FALLBACK_MODEL,
    STATIC_MODELS,
    Model,
    ModelRegistry,
    Provider,
    registry,
)


def _model(model_id: str, provider: Provider = Provider.OPENAI, **overrides: object) -> Model:
    fields = {
        "id": model_id,
        "name": model_id.upper(),
        "provider": provider,
        "max_tokens": 1000,
        "cost_per_token": 0.001,
        "capabilities": {"chat"},
        "description": "",
    }
    fields.update(overrides)
    return Model(**fields)


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


class TestModel:
    def test_capabilities_coerced_to_frozenset(self) -> None:
        model = _model("m", capabilities=["code", "code", "chat"])
        assert model.capabilities == frozenset({"code", "chat"})

    def test_provider_string_coerced_to_enum(self) -> None:
        model = _model("m", provider="deepseek")
        assert model.provider is Provider.DEEPSEEK

    def test_non_positive_max_tokens_rejected(self) -> None:
        with pytest.raises(ValueError, match="max_tokens"):
            _model("m", max_tokens=0)

    def test_negative_cost_rejected(self) -> None:
        with pytest.raises(ValueError, match="cost_per_token"):
            _model("m", cost_per_token=-0.1)

    def test_models_are_immutable(self) -> None:
        with pytest.raises(dataclasses.FrozenInstanceError):
            registry.default_model.cost_per_token = 0  # type: ignore[misc]

    def test_to_dict_uses_camel_case(self) -> None:
        data = _model("m", capabilities={"b", "a"}).to_dict()
        assert data == {
            "id": "m",
            "name": "M",
            "provider": "openai",
            "maxTokens": 1000,
            "costPerToken": 0.001,
            "capabilities": ["a", "b"],
            "description": "",
        }


# ---------------------------------------------------------------------------
# Static catalog
# ---------------------------------------------------------------------------


class TestStaticCatalog:
    def test_contains_expected_models(self) -> None:
        assert [model.id for model in registry] == [
            "gpt-4",
            "gpt-4-turbo",
            "gpt-3.5-turbo",
            "claude-3-opus",
            "claude-3-sonnet",
            "claude-3-haiku",
            "deepseek-chat",
            "deepseek-coder",
        ]
        assert len(registry) == len(STATIC_MODELS)

    def test_default_and_fallback(self) -> None:
        assert registry.default_model.id == DEFAULT_MODEL == "gpt-4"
        assert registry.fallback_model is not None
        assert registry.fallback_model.id == FALLBACK_MODEL == "claude-3-sonnet"

    def test_openrouter_has_no_static_models(self) -> None:
        assert registry.get_models_by_provider(Provider.OPENROUTER) == []


# ---------------------------------------------------------------------------
# Lookup and filtering
# ---------------------------------------------------------------------------


class TestLookup:
    def test_get_model_by_id(self) -> None:
        model = registry.get_model_by_id("claude-3-opus")
        assert model is not None
        assert model.provider is Provider.ANTHROPIC

    def test_get_unknown_model_returns_none(self) -> None:
        assert registry.get_model_by_id("gpt-17") is None

    def test_contains(self) -> None:
        assert "deepseek-chat" in registry
        assert "gpt-17" not in registry

    @pytest.mark.parametrize("provider", [Provider.DEEPSEEK, "deepseek"])
    def test_models_by_provider_accepts_enum_or_string(self, provider: object) -> None:
        ids = [model.id for model in registry.get_models_by_provider(provider)]
        assert ids == ["deepseek-chat", "deepseek-coder"]

    def test_models_by_unknown_provider_is_empty(self) -> None:
        assert registry.get_models_by_provider("mistral") == []

    def test_capabilities_lookup(self) -> None:
        assert "debugging" in registry.get_model_capabilities("deepseek-coder")
        assert registry.get_model_capabilities("gpt-17") == frozenset()


# ---------------------------------------------------------------------------
# Cost and recommendation
# ---------------------------------------------------------------------------


class TestEstimateCost:
    def test_known_model(self) -> None:
        assert registry.estimate_cost("gpt-4", 1000, 500) == pytest.approx(1500 * 0.00003)

    def test_unknown_model_costs_zero(self) -> None:
        assert registry.estimate_cost("unknown-id", 1000, 500) == 0

    def test_zero_tokens(self) -> None:
        assert registry.estimate_cost("claude-3-haiku", 0, 0) == 0


class TestRecommendModel:
    @pytest.mark.parametrize(
        ("task", "expected"),
        [
            ("write code for a parser", "gpt-4"),
            ("Help with PROGRAMMING homework", "gpt-4"),
            ("market research on tea", "claude-3-opus"),
            ("deep analysis of logs", "claude-3-opus"),
            ("casual chat", "claude-3-sonnet"),
            ("summarize this", "gpt-4"),
            ("", "gpt-4"),
        ],
    )
    def test_keyword_rules(self, task: str, expected: str) -> None:
        assert registry.recommend_model(task).id == expected

    def test_code_rule_wins_over_later_rules(self) -> None:
        assert registry.recommend_model("code analysis chat").id == "gpt-4"

    def test_missing_preferred_model_falls_back_to_default(self) -> None:
        custom = ModelRegistry([_model("only")], default_model_id="only")
        assert custom.recommend_model("write code").id == "only"


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestRegistryConstruction:
    def test_duplicate_ids_rejected(self) -> None:
        with pytest.raises(ValueError, match="duplicate"):
            ModelRegistry([_model("a"), _model("a")], default_model_id="a")

    def test_missing_default_rejected(self) -> None:
        with pytest.raises(ValueError, match="default"):
            ModelRegistry([_model("a")], default_model_id="b")

    def test_missing_fallback_is_none(self) -> None:
        custom = ModelRegistry([_model("a")], default_model_id="a", fallback_model_id="z")
        assert custom.fallback_model is None
