from __future__ import annotations

import logging

import httpx
from google import genai
from google.genai import errors, types

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

JSON_INSTRUCTION = "Please respond with valid JSON."


class GeminiProvider(LLMProvider):
    """Provider backed by the Google Gemini API (google-genai SDK)."""

    name = "gemini"
    DEFAULT_MODEL = "gemini-2.0-flash"
    SUPPORTS_SEED = True

    def _client(self, api_key: str) -> genai.Client:
        return genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(self.timeout * 1000)),
        )

    @staticmethod
    def to_contents(prompt: PromptData) -> tuple[str, list[types.Content]]:
        """Split messages into a system instruction and user/model turns."""
        system = "\n".join(m.content for m in prompt.messages if m.role == "system")
        system = f"{system}\n\n{JSON_INSTRUCTION}" if system else JSON_INSTRUCTION
        contents = [
            types.Content(
                role="user" if m.role == "user" else "model",
                parts=[types.Part(text=m.content)],
            )
            for m in prompt.messages
            if m.role != "system"
        ]
        return system, contents

    async def complete(
        self,
        options: GenerationOptions,
        prompt: PromptData,
        *,
        request_id: str,
    ) -> str:
        temperature, max_tokens = self.sampling(options, prompt)
        seed = self.new_seed()
        system, contents = self.to_contents(prompt)
        log.info("Gemini complete: model=%s, seed=%d, turns=%d",
                 options.model_id, seed, len(contents))
        client = self._client(options.api_key)
        response = await client.aio.models.generate_content(
            model=options.model_id,
            contents=contents,
            config=types.GenerateContentConfig(
                system_instruction=system,
                temperature=temperature,
                max_output_tokens=max_tokens,
                response_mime_type="application/json",
                seed=seed,
            ),
        )
        return response.text or ""

    async def fetch_models(self, api_key: str) -> list[ModelInfo]:
        client = self._client(api_key)
        models = []
        async for model in await client.aio.models.list():
            model_id = (model.name or "").removeprefix("models/")
            models.append(
                ModelInfo(
                    id=model_id,
                    name=model.display_name or model_id,
                    provider=self.name,
                    owned_by="Google",
                    context_window=model.input_token_limit
                    or context_window_for(model_id, self.name),
                )
            )
        return models

    def classify_error(self, exc: BaseException) -> ProviderError:
        if isinstance(exc, httpx.TimeoutException):
            return ProviderTimeoutError("Gemini request timeout", provider=self.name)
        if isinstance(exc, errors.APIError):
            message = exc.message or str(exc)
            # Gemini answers an invalid key with 400 API_KEY_INVALID
            if exc.code in (401, 403) or "API_KEY_INVALID" in str(exc) or "API key not valid" in message:
                return AuthError("Invalid Gemini API key or unauthorized access", provider=self.name)
            if exc.code == 429:
                return RateLimitError("Gemini rate limit exceeded", provider=self.name)
            if isinstance(exc, errors.ServerError):
                return ProviderServerError(f"Gemini service error: {message}", provider=self.name)
        return super().classify_error(exc)
