"""Provider-agnostic generation gateway.

Callers hand over ``GenerationOptions`` and ``PromptData`` and get back a
normalized record or one of the taxonomy errors in :mod:`storyloom.errors`.
Which SDK served the request never leaks past this module.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from typing import Mapping, Optional

from storyloom.config import settings
from storyloom.errors import ConfigurationError
from storyloom.llm.base import LLMProvider
from storyloom.llm.model_cache import ModelCache
from storyloom.llm.registry import PROVIDERS, get_provider_class, normalize_provider
from storyloom.models.generation import (
    GenerationOptions,
    ModelInfo,
    ParsedSegment,
    ParsedSummary,
    PromptData,
)

log = logging.getLogger(__name__)
prompt_log = logging.getLogger("storyloom.prompts")


def _key_fingerprint(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:12]


class GenerationGateway:
    """Uniform ``generate(options, prompt_data)`` over the four provider adapters."""

    def __init__(
        self,
        providers: Optional[Mapping[str, LLMProvider]] = None,
        model_cache: Optional[ModelCache] = None,
        timeout: Optional[float] = None,
    ):
        if providers is None:
            providers = {name: cls(timeout=timeout) for name, cls in PROVIDERS.items()}
        self._providers = {normalize_provider(k): v for k, v in providers.items()}
        self.model_cache = model_cache or ModelCache(ttl=settings.model_cache_ttl)

    # ── dispatch ────────────────────────────────────────────────────────

    def provider(self, name: str) -> LLMProvider:
        key = normalize_provider(name)
        adapter = self._providers.get(key)
        if adapter is None:
            # raises ConfigurationError for names that are not supported at all
            get_provider_class(key)
            raise ConfigurationError(f"AI provider '{name}' is not enabled")
        return adapter

    def resolve(self, options: GenerationOptions) -> tuple[LLMProvider, GenerationOptions]:
        """Validate *options* and pick the adapter that serves them."""
        missing = [
            field
            for field, value in (
                ("provider", options.provider),
                ("modelId", options.model_id),
                ("apiKey", options.api_key),
            )
            if not (value or "").strip()
        ]
        if missing:
            raise ConfigurationError(
                f"Missing required AI provider options: {', '.join(missing)}"
            )
        adapter = self.provider(options.provider)
        normalized = options.model_copy(update={"provider": adapter.name})
        return adapter, normalized

    # ── generation ──────────────────────────────────────────────────────

    async def generate(self, options: GenerationOptions, prompt_data: PromptData) -> ParsedSegment:
        adapter, options = self.resolve(options)
        request_id = self._audit(adapter, options, prompt_data)
        return await adapter.generate(options, prompt_data, request_id=request_id)

    async def generate_summary(
        self,
        options: GenerationOptions,
        prompt_data: PromptData,
    ) -> ParsedSummary:
        adapter, options = self.resolve(options)
        request_id = self._audit(adapter, options, prompt_data)
        return await adapter.generate_summary(options, prompt_data, request_id=request_id)

    # ── models ──────────────────────────────────────────────────────────

    async def list_models(self, provider: str, api_key: str, *, use_cache: bool = True) -> list[ModelInfo]:
        if not (provider or "").strip() or not (api_key or "").strip():
            raise ConfigurationError("Missing required provider or API key")
        adapter = self.provider(provider)
        cache_key = f"{adapter.name}:{_key_fingerprint(api_key)}"
        if use_cache:
            cached = self.model_cache.get(cache_key)
            if cached is not None:
                log.debug("Model list cache hit for %s", adapter.name)
                return cached
        else:
            self.model_cache.invalidate(cache_key)
        models = await adapter.list_models(api_key)
        self.model_cache.put(cache_key, models)
        log.info("Fetched %d %s models", len(models), adapter.name)
        return models

    # ── audit ───────────────────────────────────────────────────────────

    @staticmethod
    def _audit(adapter: LLMProvider, options: GenerationOptions, prompt_data: PromptData) -> str:
        """Record the request before dispatch.  Never fails the call path."""
        request_id = uuid.uuid4().hex
        try:
            temperature, max_tokens = adapter.sampling(options, prompt_data)
            prompt_log.info(
                "LLM prompt request_id=%s provider=%s model=%s temperature=%.2f "
                "max_tokens=%d messages=%d ending=%s",
                request_id,
                adapter.name,
                options.model_id,
                temperature,
                max_tokens,
                len(prompt_data.messages),
                prompt_data.is_ending,
            )
            prompt_log.debug("LLM prompt request_id=%s messages=%s", request_id, prompt_data.as_dicts())
        except Exception as exc:  # audit must not block generation
            log.warning("Prompt audit logging failed for %s: %s", request_id, exc)
        return request_id
