"""Model catalog: the static registry and the live OpenRouter listing."""

from chatrelay.catalog.openrouter import fetch_openrouter_models, parse_catalog
from chatrelay.catalog.registry import (
    DEFAULT_MODEL,
    FALLBACK_MODEL,
    STATIC_MODELS,
    Model,
    ModelRegistry,
    Provider,
    registry,
)

__all__ = [
    "DEFAULT_MODEL",
    "FALLBACK_MODEL",
    "STATIC_MODELS",
    "Model",
    "ModelRegistry",
    "Provider",
    "registry",
    "fetch_openrouter_models",
    "parse_catalog",
]
