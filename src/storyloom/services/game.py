from __future__ import annotations

import logging
from typing import Optional

from storyloom.db.repository import GameRepository
from storyloom.errors import ConfigurationError
from storyloom.models.game import ContextConfig, Game, GameStatus, StorySegment

log = logging.getLogger(__name__)

MIN_TOTAL_TURNS = 1
MAX_TOTAL_TURNS = 100


class GameService:
    """Game bookkeeping that never calls an LLM: create, browse, delete, preferences."""

    def __init__(self, repo: GameRepository | None = None):
        self._repo = repo or GameRepository()

    async def create_game(
        self,
        user_id: str,
        genre: str,
        title: Optional[str] = None,
        total_turns: Optional[int] = None,
    ) -> Game:
        genre = (genre or "").strip()
        if not genre:
            raise ConfigurationError("A genre is required to create a game")
        if total_turns is not None and not MIN_TOTAL_TURNS <= total_turns <= MAX_TOTAL_TURNS:
            raise ConfigurationError(
                f"totalTurns must be between {MIN_TOTAL_TURNS} and {MAX_TOTAL_TURNS}"
            )
        return await self._repo.create_game(
            user_id=user_id,
            genre=genre,
            title=(title or "").strip() or None,
            total_turns=total_turns,
        )

    async def list_games(
        self,
        user_id: str,
        status: Optional[GameStatus] = None,
        page: int = 1,
        limit: int = 10,
    ) -> dict:
        games, total = await self._repo.list_games(user_id, status=status, page=page, limit=limit)
        return {
            "games": games,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": -(-total // limit) if limit else 0,
            },
        }

    async def get_game(self, game_id: int, user_id: str) -> Game:
        return await self._repo.get_game_by_id(game_id, user_id)

    async def get_segments(self, game_id: int, user_id: str) -> list[StorySegment]:
        await self._repo.get_game_by_id(game_id, user_id)
        return await self._repo.get_segments(game_id)

    async def delete_game(self, game_id: int, user_id: str) -> None:
        await self._repo.delete_game(game_id, user_id)

    async def get_context_config(self, user_id: str) -> ContextConfig:
        return await self._repo.get_context_config(user_id)

    async def update_context_config(
        self,
        user_id: str,
        max_segments: Optional[int] = None,
        max_tokens: Optional[int] = None,
    ) -> ContextConfig:
        """Partial update; unspecified fields keep their current value."""
        current = await self._repo.get_context_config(user_id)
        updated = current.model_copy(
            update={
                k: v
                for k, v in (("max_segments", max_segments), ("max_tokens", max_tokens))
                if v is not None
            }
        )
        if updated.max_segments <= 0 or updated.max_tokens <= 0:
            raise ConfigurationError("maxSegments and maxTokens must be positive")
        log.info("Context config for %s: %d segments, %d tokens",
                 user_id, updated.max_segments, updated.max_tokens)
        return await self._repo.set_context_config(user_id, updated)
