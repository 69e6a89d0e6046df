from __future__ import annotations

from pathlib import Path
from typing import Dict

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


_PROJECT_ROOT = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Server-side fallback keys (a request's x-llm-api-key wins) ---
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    groq_api_key: str = ""
    gemini_api_key: str = ""

    # --- Default provider & models ---
    default_provider: str = "groq"  # openai | anthropic | groq | gemini
    default_models: Dict[str, str] = Field(
        default_factory=lambda: {
            "openai": "gpt-4o-mini",
            "anthropic": "claude-3-5-haiku-latest",
            "groq": "llama-3.1-8b-instant",
            "gemini": "gemini-2.0-flash",
        }
    )

    # --- Generation defaults ---
    default_temperature: float = 0.7
    default_max_tokens: int = 1500
    request_timeout: float = 45.0  # seconds, surfaced as ProviderTimeoutError
    model_cache_ttl: float = 3600.0  # seconds

    # --- Story defaults ---
    context_max_tokens: int = 6000
    default_max_segments: int = 16
    default_total_turns: int = 16

    # --- Paths ---
    prompts_dir: str = str(Path(__file__).resolve().parent / "prompts" / "templates")

    # --- Database ---
    database_url: str = f"sqlite+aiosqlite:///{_PROJECT_ROOT / 'storyloom.db'}"

    log_level: str = "INFO"

    def server_key_for(self, provider: str) -> str:
        """Return the configured fallback API key for *provider* ("" if none)."""
        return getattr(self, f"{provider.lower()}_api_key", "") or ""


settings = Settings()
