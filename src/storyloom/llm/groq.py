from __future__ import annotations

import logging
from typing import Optional

import groq
from groq import AsyncGroq

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

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def failed_generation(exc: BaseException) -> Optional[str]:
    """Text Groq produced before its JSON-mode validator rejected it, if any."""
    body = getattr(exc, "body", None)
    if not isinstance(body, dict):
        return None
    error = body.get("error", body)
    if isinstance(error, dict):
        text = error.get("failed_generation")
        if isinstance(text, str) and text.strip():
            return text
    return None


class GroqProvider(LLMProvider):
    """Provider backed by Groq's OpenAI-compatible chat API."""

    name = "groq"
    DEFAULT_MODEL = "llama-3.1-8b-instant"
    SUPPORTS_SEED = True

    PRESENCE_PENALTY = 0.1
    FREQUENCY_PENALTY = 0.1

    def _client(self, api_key: str) -> AsyncGroq:
        return AsyncGroq(
            api_key=api_key,
            timeout=self.timeout,
            max_retries=0,
            default_headers=NO_CACHE_HEADERS,
        )

    async def complete(
        self,
        options: GenerationOptions,
        prompt: PromptData,
        *,
        request_id: str,
    ) -> str:
        temperature, max_tokens = self.sampling(options, prompt)
        seed = self.new_seed()
        log.info("Groq complete: model=%s, seed=%d, messages=%d",
                 options.model_id, seed, len(prompt.messages))
        async with self._client(options.api_key) as client:
            try:
                response = await client.chat.completions.create(
                    model=options.model_id,
                    messages=prompt.as_dicts(),
                    temperature=max(temperature, 0.1),
                    max_tokens=max_tokens,
                    response_format={"type": "json_object"},
                    presence_penalty=self.PRESENCE_PENALTY,
                    frequency_penalty=self.FREQUENCY_PENALTY,
                    seed=seed,
                    user=f"storyloom-{request_id}",
                )
            except groq.BadRequestError as exc:
                salvage = failed_generation(exc)
                if salvage is None:
                    raise
                log.warning("Groq rejected its own JSON (seed=%d), salvaging failed_generation", seed)
                return salvage
        return response.choices[0].message.content or ""

    async def fetch_models(self, api_key: str) -> list[ModelInfo]:
        async with self._client(api_key) as client:
            response = await client.models.list()
        return [
            ModelInfo(
                id=model.id,
                name=model.id,
                provider=self.name,
                created=model.created,
                owned_by=model.owned_by,
                context_window=getattr(model, "context_window", None)
                or context_window_for(model.id, self.name),
            )
            for model in response.data
            if getattr(model, "active", True)
        ]

    def classify_error(self, exc: BaseException) -> ProviderError:
        if isinstance(exc, groq.APITimeoutError):
            return ProviderTimeoutError("Groq request timeout", provider=self.name)
        if isinstance(exc, (groq.AuthenticationError, groq.PermissionDeniedError)):
            return AuthError("Invalid Groq API key or unauthorized access", provider=self.name)
        if isinstance(exc, groq.RateLimitError):
            return RateLimitError("Groq rate limit exceeded", provider=self.name)
        if isinstance(exc, groq.InternalServerError):
            return ProviderServerError(f"Groq service error: {exc}", provider=self.name)
        return super().classify_error(exc)
