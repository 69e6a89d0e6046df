from __future__ import annotations

import logging

import openai
from openai import AsyncOpenAI

from storyloom.llm.base import LLMProvider
from storyloom.llm.context_windows import context_window_for
from storyloom.errors import (
    AuthError,
    ProviderError,
    ProviderServerError,
    ProviderTimeoutError,
    RateLimitError,
)
from storyloom.models.generation import GenerationOptions, ModelInfo, PromptData

log = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """Provider backed by the OpenAI chat completions API (JSON mode)."""

    name = "openai"
    DEFAULT_MODEL = "gpt-4o-mini"
    SUPPORTS_SEED = True

    def _client(self, api_key: str) -> AsyncOpenAI:
        # one request per generation; the caller owns retries
        return AsyncOpenAI(api_key=api_key, timeout=self.timeout, max_retries=0)

    async def complete(
        self,
        options: GenerationOptions,
        prompt: PromptData,
        *,
        request_id: str,
    ) -> str:
        temperature, max_tokens = self.sampling(options, prompt)
        seed = self.new_seed()
        log.info("OpenAI complete: model=%s, seed=%d, messages=%d",
                 options.model_id, seed, len(prompt.messages))
        async with self._client(options.api_key) as client:
            response = await client.chat.completions.create(
                model=options.model_id,
                messages=prompt.as_dicts(),
                temperature=temperature,
                max_tokens=max_tokens,
                response_format={"type": "json_object"},
                seed=seed,
                user=f"storyloom-{request_id}",
            )
        return response.choices[0].message.content or ""

    async def fetch_models(self, api_key: str) -> list[ModelInfo]:
        models = []
        async with self._client(api_key) as client:
            async for model in client.models.list():
                models.append(
                    ModelInfo(
                        id=model.id,
                        name=model.id,
                        provider=self.name,
                        created=model.created,
                        owned_by=model.owned_by,
                        context_window=context_window_for(model.id, self.name),
                    )
                )
        return models

    def classify_error(self, exc: BaseException) -> ProviderError:
        if isinstance(exc, openai.APITimeoutError):
            return ProviderTimeoutError("OpenAI request timeout", provider=self.name)
        if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
            return AuthError("Invalid OpenAI API key or unauthorized access", provider=self.name)
        if isinstance(exc, openai.RateLimitError):
            return RateLimitError("OpenAI rate limit exceeded", provider=self.name)
        if isinstance(exc, openai.InternalServerError):
            return ProviderServerError(f"OpenAI service error: {exc}", provider=self.name)
        return super().classify_error(exc)
