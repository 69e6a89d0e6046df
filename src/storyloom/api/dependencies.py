"""Shared FastAPI dependencies: service singletons and per-request provider options."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Header, HTTPException

from storyloom.config import settings
from storyloom.db.repository import GameRepository
from storyloom.engine.locks import GameLocks
from storyloom.llm.gateway import GenerationGateway
from storyloom.llm.registry import default_model_for, normalize_provider
from storyloom.models.generation import GenerationOptions
from storyloom.prompts.builder import StoryPrompts
from storyloom.services.game import GameService
from storyloom.services.story import StoryService

log = logging.getLogger(__name__)

# --- Singletons ---

_repo = GameRepository()
_prompts = StoryPrompts()
# the only in-process shared state: model cache (inside the gateway) and game locks
_gateway = GenerationGateway()
_locks = GameLocks()


def get_gateway() -> GenerationGateway:
    return _gateway


def get_game_service() -> GameService:
    return GameService(_repo)


def get_story_service() -> StoryService:
    return StoryService(_gateway, _repo, _prompts, _locks)


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """User id from the trusted ``x-user-id`` header set by the auth proxy."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(401, "Missing x-user-id header")
    return x_user_id.strip()


def get_api_key(x_llm_api_key: Optional[str] = Header(default=None)) -> Optional[str]:
    return x_llm_api_key.strip() if x_llm_api_key else None


def generation_options(
    api_key: Optional[str],
    preferred_provider: Optional[str] = None,
    preferred_model: Optional[str] = None,
) -> GenerationOptions:
    """Resolve provider, model and key: request first, then server settings.

    Validation of the result is left to the gateway so a missing key surfaces
    as the same ``ConfigurationError`` everywhere.
    """
    provider = normalize_provider(preferred_provider) or settings.default_provider
    model = preferred_model or default_model_for(provider)
    key = api_key or settings.server_key_for(provider)
    if not api_key and key:
        log.debug("Using server-side %s key", provider)
    return GenerationOptions(provider=provider, model_id=model, api_key=key)
