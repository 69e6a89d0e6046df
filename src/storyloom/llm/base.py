from __future__ import annotations

import asyncio
import logging
import secrets
from abc import ABC, abstractmethod
from typing import Awaitable, Optional, TypeVar

from storyloom.config import settings
from storyloom.errors import (
    AuthError,
    ProviderError,
    ProviderServerError,
    ProviderTimeoutError,
    RateLimitError,
    StoryloomError,
    UnknownProviderError,
)
from storyloom.models.generation import (
    GenerationOptions,
    ModelInfo,
    ParsedSegment,
    ParsedSummary,
    PromptData,
)
from storyloom.parsing.output_parser import OutputParser

T = TypeVar("T")
log = logging.getLogger(__name__)

MAX_SEED = 2_147_483_647


def classify_status(status: Optional[int], message: str, provider: str) -> ProviderError:
    """Map an HTTP-ish status code onto the provider error taxonomy."""
    if status == 401 or status == 403:
        return AuthError(f"Invalid {provider} API key or unauthorized access", provider=provider)
    if status == 429:
        return RateLimitError(f"{provider} rate limit exceeded", provider=provider)
    if status in (408, 504):
        return ProviderTimeoutError(f"{provider} request timeout", provider=provider)
    if status is not None and status >= 500:
        return ProviderServerError(f"{provider} service error: {message}", provider=provider)
    return UnknownProviderError(f"{provider} request failed: {message}", provider=provider)


class LLMProvider(ABC):
    """Abstract base for the four provider adapters (OpenAI, Anthropic, Groq, Gemini).

    Subclasses implement one raw network call (:meth:`complete`) and the
    SDK-specific part of :meth:`classify_error`.  Timeouts, parsing and error
    translation live here so every adapter behaves the same way for callers.
    """

    name: str = ""
    DEFAULT_MODEL: str = ""
    SUPPORTS_SEED: bool = False

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout or settings.request_timeout

    # ── to implement ────────────────────────────────────────────────────

    @abstractmethod
    async def complete(
        self,
        options: GenerationOptions,
        prompt: PromptData,
        *,
        request_id: str,
    ) -> str:
        """Issue exactly one provider call and return the raw text."""

    @abstractmethod
    async def fetch_models(self, api_key: str) -> list[ModelInfo]:
        """Return the models the key has access to."""

    # ── shared behaviour ────────────────────────────────────────────────

    async def generate(
        self,
        options: GenerationOptions,
        prompt: PromptData,
        *,
        request_id: str,
    ) -> ParsedSegment:
        raw = await self.guard(self.complete(options, prompt, request_id=request_id))
        log.info("%s response for %s: %d chars", self.name, request_id, len(raw))
        try:
            return OutputParser.parse_segment(raw, is_ending=prompt.is_ending)
        except StoryloomError as exc:
            log.error("%s output could not be parsed (%s); raw[:500]=%r",
                      self.name, request_id, raw[:500])
            exc.provider = self.name
            raise

    async def generate_summary(
        self,
        options: GenerationOptions,
        prompt: PromptData,
        *,
        request_id: str,
    ) -> ParsedSummary:
        raw = await self.guard(self.complete(options, prompt, request_id=request_id))
        try:
            return OutputParser.parse_summary(raw)
        except StoryloomError:
            log.error("%s summary could not be parsed (%s); raw[:500]=%r",
                      self.name, request_id, raw[:500])
            raise

    async def list_models(self, api_key: str) -> list[ModelInfo]:
        return await self.guard(self.fetch_models(api_key))

    async def guard(self, call: Awaitable[T]) -> T:
        """Run *call* under the request timeout, translating every failure."""
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except StoryloomError:
            raise
        except Exception as exc:
            error = self.classify_error(exc)
            log.error("%s SDK error (%s): %s", self.name, error.kind, exc)
            raise error from exc

    def classify_error(self, exc: BaseException) -> ProviderError:
        """Fallback classification from generic attributes.

        Adapters check their SDK's exception types first and defer here.
        """
        if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
            return ProviderTimeoutError(f"{self.name} request timeout", provider=self.name)
        status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
        if not isinstance(status, int):
            status = getattr(exc, "code", None)
        if not isinstance(status, int):
            status = None
        return classify_status(status, str(exc), self.name)

    # ── helpers for adapters ────────────────────────────────────────────

    @staticmethod
    def sampling(options: GenerationOptions, prompt: PromptData) -> tuple[float, int]:
        """Effective (temperature, max_tokens): options, then prompt, then settings."""
        temperature = options.temperature
        if temperature is None:
            temperature = prompt.temperature
        if temperature is None:
            temperature = settings.default_temperature
        max_tokens = options.max_tokens or prompt.max_tokens or settings.default_max_tokens
        return temperature, max_tokens

    @staticmethod
    def new_seed() -> int:
        """Request-scoped random seed, defeats provider-side response caching."""
        return secrets.randbelow(MAX_SEED)
