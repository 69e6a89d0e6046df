from __future__ import annotations

import logging

import anthropic
from anthropic import AsyncAnthropic

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

JSON_SYSTEM_PROMPT = "Always respond with valid JSON objects."


class AnthropicProvider(LLMProvider):
    """Provider backed by the Anthropic messages API."""

    name = "anthropic"
    DEFAULT_MODEL = "claude-3-5-haiku-latest"

    def _client(self, api_key: str) -> AsyncAnthropic:
        return AsyncAnthropic(api_key=api_key, timeout=self.timeout, max_retries=0)

    @staticmethod
    def split_system(prompt: PromptData) -> tuple[str, list[dict[str, str]]]:
        """Lift system messages into Anthropic's ``system`` parameter."""
        system = "\n".join(m.content for m in prompt.messages if m.role == "system")
        messages = [m.model_dump() for m in prompt.messages if m.role != "system"]
        return system or JSON_SYSTEM_PROMPT, messages

    async def complete(
        self,
        options: GenerationOptions,
        prompt: PromptData,
        *,
        request_id: str,
    ) -> str:
        temperature, max_tokens = self.sampling(options, prompt)
        temperature = min(temperature, 1.0)
        system, messages = self.split_system(prompt)
        log.info("Anthropic complete: model=%s, messages=%d", options.model_id, len(messages))
        async with self._client(options.api_key) as client:
            response = await client.messages.create(
                model=options.model_id,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system,
                messages=messages,
                metadata={"user_id": f"storyloom-{request_id}"},
            )
        return "".join(b.text for b in response.content if b.type == "text")

    async def fetch_models(self, api_key: str) -> list[ModelInfo]:
        models = []
        async with self._client(api_key) as client:
            async for model in client.models.list():
                models.append(
                    ModelInfo(
                        id=model.id,
                        name=model.display_name or model.id,
                        provider=self.name,
                        created=model.created_at.timestamp() if model.created_at else None,
                        owned_by="Anthropic",
                        context_window=context_window_for(model.id, self.name),
                    )
                )
        return models

    def classify_error(self, exc: BaseException) -> ProviderError:
        if isinstance(exc, anthropic.APITimeoutError):
            return ProviderTimeoutError("Anthropic request timeout", provider=self.name)
        if isinstance(exc, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
            return AuthError("Invalid Anthropic API key or unauthorized access", provider=self.name)
        if isinstance(exc, anthropic.RateLimitError):
            return RateLimitError("Anthropic rate limit exceeded", provider=self.name)
        if isinstance(exc, anthropic.InternalServerError):
            return ProviderServerError(f"Anthropic service error: {exc}", provider=self.name)
        return super().classify_error(exc)
