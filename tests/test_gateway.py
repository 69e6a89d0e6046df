import asyncio
import logging

import pytest

from conftest import FakeProvider, segment_json
from storyloom.errors import (
    AuthError,
    ConfigurationError,
    GenerationFormatError,
    ProviderServerError,
    ProviderTimeoutError,
    RateLimitError,
    UnknownProviderError,
)
from storyloom.llm import gateway as gateway_module
from storyloom.llm.base import classify_status
from storyloom.llm.gateway import GenerationGateway
from storyloom.llm.model_cache import ModelCache
from storyloom.llm.registry import get_provider_class, list_providers
from storyloom.models.generation import GenerationOptions, Message, PromptData

PROMPT = PromptData(messages=[Message(role="user", content="Tell me a story")])


class StatusError(Exception):
    def __init__(self, status_code):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class SlowProvider(FakeProvider):
    async def complete(self, options, prompt, *, request_id):
        await asyncio.sleep(1)
        return segment_json()


@pytest.mark.parametrize(
    "missing, field",
    [("provider", "provider"), ("model_id", "modelId"), ("api_key", "apiKey")],
)
async def test_missing_options_are_configuration_errors(gateway, options, missing, field):
    broken = options.model_copy(update={missing: ""})
    with pytest.raises(ConfigurationError, match=field):
        await gateway.generate(broken, PROMPT)


async def test_unknown_and_disabled_providers(gateway, options):
    with pytest.raises(ConfigurationError, match="Unsupported"):
        await gateway.generate(options.model_copy(update={"provider": "mistral"}), PROMPT)
    with pytest.raises(ConfigurationError, match="not enabled"):
        await gateway.generate(options.model_copy(update={"provider": "openai"}), PROMPT)


async def test_dispatch_is_case_insensitive(gateway, fake_provider, options):
    fake_provider.queue(segment_json("One", "First."))
    seg = await gateway.generate(options.model_copy(update={"provider": " GROQ "}), PROMPT)
    assert seg.title == "One"
    sent_options, sent_prompt = fake_provider.calls[0]
    assert sent_options.provider == "groq"
    assert sent_prompt is PROMPT


async def test_every_request_is_audited_without_the_key(gateway, options, caplog):
    caplog.set_level(logging.DEBUG, logger="storyloom.prompts")
    await gateway.generate(options, PROMPT)
    records = [r for r in caplog.records if r.name == "storyloom.prompts"]
    assert records
    text = " ".join(r.getMessage() for r in records)
    assert "provider=groq" in text
    assert "model=llama-3.1-8b-instant" in text
    assert "messages=1" in text
    assert options.api_key not in text
    assert options.api_key not in repr(options)


async def test_audit_failure_does_not_block_generation(gateway, options, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("log sink down")

    monkeypatch.setattr(gateway_module.prompt_log, "info", boom)
    seg = await gateway.generate(options, PROMPT)
    assert seg.content


async def test_timeout_becomes_provider_timeout(options):
    slow = SlowProvider()
    slow.timeout = 0.01
    gw = GenerationGateway(providers={"groq": slow})
    with pytest.raises(ProviderTimeoutError) as info:
        await gw.generate(options, PROMPT)
    assert isinstance(info.value, TimeoutError)
    assert info.value.retryable


@pytest.mark.parametrize(
    "exc, expected",
    [
        (StatusError(401), AuthError),
        (StatusError(403), AuthError),
        (StatusError(429), RateLimitError),
        (StatusError(503), ProviderServerError),
        (StatusError(504), ProviderTimeoutError),
        (StatusError(418), UnknownProviderError),
        (ValueError("weird"), UnknownProviderError),
    ],
)
async def test_sdk_failures_are_classified(options, exc, expected):
    provider = FakeProvider(replies=[exc])
    gw = GenerationGateway(providers={"groq": provider})
    with pytest.raises(expected) as info:
        await gw.generate(options, PROMPT)
    assert info.value.provider == "groq"
    assert info.value.__cause__ is exc


async def test_empty_reply_is_a_format_error(gateway, fake_provider, options):
    fake_provider.queue("   ")
    with pytest.raises(GenerationFormatError) as info:
        await gateway.generate(options, PROMPT)
    assert info.value.provider == "groq"
    assert info.value.retryable


async def test_generate_summary(gateway, fake_provider, options):
    fake_provider.queue('{"title": "Fin", "summary": "It ended.", "keyMoments": ["x"], "theme": "Hope"}')
    summary = await gateway.generate_summary(options, PROMPT)
    assert summary.title == "Fin"
    assert summary.key_moments == ["x"]


def test_classify_status_table():
    assert isinstance(classify_status(401, "", "openai"), AuthError)
    assert isinstance(classify_status(429, "", "openai"), RateLimitError)
    assert isinstance(classify_status(408, "", "openai"), ProviderTimeoutError)
    assert isinstance(classify_status(500, "", "openai"), ProviderServerError)
    assert isinstance(classify_status(None, "", "openai"), UnknownProviderError)


async def test_model_list_is_cached_per_provider_and_key(gateway, fake_provider):
    first = await gateway.list_models("groq", "key-a")
    again = await gateway.list_models("groq", "key-a")
    assert first == again
    assert fake_provider.model_calls == 1

    await gateway.list_models("groq", "key-b")
    assert fake_provider.model_calls == 2

    await gateway.list_models("groq", "key-a", use_cache=False)
    assert fake_provider.model_calls == 3


async def test_model_list_requires_provider_and_key(gateway):
    with pytest.raises(ConfigurationError):
        await gateway.list_models("groq", "")


def test_model_cache_expiry_with_injected_clock():
    now = [100.0]
    cache = ModelCache(ttl=10, clock=lambda: now[0])
    cache.put("groq", [])
    now[0] = 109.9
    assert cache.get("groq") == []
    now[0] = 110.0
    assert cache.get("groq") is None
    assert len(cache) == 0


def test_model_cache_invalidate():
    cache = ModelCache()
    cache.put("groq:a", [])
    cache.put("groq:b", [])
    cache.invalidate("groq:a")
    assert cache.get("groq:a") is None
    assert cache.get("groq:b") == []
    cache.invalidate()
    assert len(cache) == 0


def test_registry_lookup():
    assert get_provider_class("Gemini").name == "gemini"
    with pytest.raises(ConfigurationError):
        get_provider_class("cohere")
    info = list_providers()
    assert set(info) == {"openai", "anthropic", "groq", "gemini"}
    assert info["groq"]["default_model"]
    assert info["openai"]["supports_seed"] is True
    assert info["anthropic"]["supports_seed"] is False


def test_options_repr_hides_key():
    opts = GenerationOptions(provider="openai", model_id="gpt-4o", api_key="sk-secret")
    assert "sk-secret" not in repr(opts)
