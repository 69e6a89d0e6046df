from __future__ import annotations

import logging
from typing import Optional

from storyloom.config import settings
from storyloom.errors import ConfigurationError
from storyloom.llm.base import LLMProvider
from storyloom.llm.anthropic import AnthropicProvider
from storyloom.llm.gemini import GeminiProvider
from storyloom.llm.groq import GroqProvider
from storyloom.llm.openai import OpenAIProvider

log = logging.getLogger(__name__)

PROVIDERS: dict[str, type[LLMProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "groq": GroqProvider,
    "gemini": GeminiProvider,
}


def normalize_provider(name: Optional[str]) -> str:
    return (name or "").strip().lower()


def get_provider_class(name: Optional[str]) -> type[LLMProvider]:
    """Look up an adapter class by (case-insensitive) provider name."""
    key = normalize_provider(name)
    try:
        return PROVIDERS[key]
    except KeyError:
        raise ConfigurationError(
            f"Unsupported AI provider '{name}'. Choose from: {list(PROVIDERS)}"
        ) from None


def default_model_for(name: str) -> str:
    key = normalize_provider(name)
    return settings.default_models.get(key) or get_provider_class(key).DEFAULT_MODEL


def list_providers() -> dict:
    """Return info about every supported provider."""
    result = {}
    for name, cls in PROVIDERS.items():
        result[name] = {
            "configured": bool(settings.server_key_for(name)),
            "default_model": default_model_for(name),
            "supports_seed": cls.SUPPORTS_SEED,
            "is_default": name == settings.default_provider,
        }
    return result
