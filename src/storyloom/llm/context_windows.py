from __future__ import annotations

# Known context windows (tokens).  Prefix matches cover dated variants.
CONTEXT_WINDOWS = {
    # OpenAI
    "gpt-3.5-turbo": 16385,
    "gpt-4": 8192,
    "gpt-4-32k": 32768,
    "gpt-4-turbo": 128000,
    "gpt-4o": 128000,
    "gpt-4o-mini": 128000,
    "gpt-4.1": 1047576,
    # Anthropic
    "claude-3-opus": 200000,
    "claude-3-sonnet": 200000,
    "claude-3-haiku": 200000,
    "claude-3-5-sonnet": 200000,
    "claude-3-5-haiku": 200000,
    "claude-2.1": 200000,
    "claude-2": 100000,
    # Groq
    "llama3-8b-8192": 8192,
    "llama3-70b-8192": 8192,
    "llama-3.1-8b-instant": 131072,
    "llama-3.3-70b-versatile": 131072,
    "mixtral-8x7b-32768": 32768,
    # Gemini
    "gemini-1.0-pro": 32000,
    "gemini-1.5-flash": 1000000,
    "gemini-1.5-pro": 1000000,
    "gemini-2.0-flash": 1048576,
}

PROVIDER_DEFAULTS = {
    "openai": 4096,
    "anthropic": 100000,
    "groq": 8192,
    "gemini": 32000,
}


def context_window_for(model_id: str, provider: str) -> int:
    """Best-known context window of *model_id*: exact, then longest prefix, then provider default."""
    model_id = model_id.removeprefix("models/")
    if model_id in CONTEXT_WINDOWS:
        return CONTEXT_WINDOWS[model_id]
    prefixes = [k for k in CONTEXT_WINDOWS if model_id.startswith(k)]
    if prefixes:
        return CONTEXT_WINDOWS[max(prefixes, key=len)]
    return PROVIDER_DEFAULTS.get(provider.lower(), 4096)
