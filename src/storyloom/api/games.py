from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from storyloom.api.dependencies import get_game_service, get_user_id
from storyloom.api.responses import game_payload, success
from storyloom.models.game import GameStatus
from storyloom.services.game import GameService

router = APIRouter(prefix="/api/games", tags=["games"])


class CreateGameRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    genre: str
    title: Optional[str] = None
    total_turns: Optional[int] = None


@router.get("")
async def list_games(
    status: Optional[GameStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: str = Depends(get_user_id),
    svc: GameService = Depends(get_game_service),
):
    """List the user's games, newest first."""
    result = await svc.list_games(user_id, status=status, page=page, limit=limit)
    result["games"] = [game_payload(g) for g in result["games"]]
    return success(result)


@router.post("", status_code=201)
async def create_game(
    body: CreateGameRequest,
    user_id: str = Depends(get_user_id),
    svc: GameService = Depends(get_game_service),
):
    """Create an empty game; content is generated by ``/start``."""
    game = await svc.create_game(user_id, body.genre, body.title, body.total_turns)
    return success(game_payload(game))


@router.get("/{game_id}")
async def get_game(
    game_id: int,
    user_id: str = Depends(get_user_id),
    svc: GameService = Depends(get_game_service),
):
    game = await svc.get_game(game_id, user_id)
    return success(game_payload(game))


@router.delete("/{game_id}")
async def delete_game(
    game_id: int,
    user_id: str = Depends(get_user_id),
    svc: GameService = Depends(get_game_service),
):
    await svc.delete_game(game_id, user_id)
    return success(None)


@router.get("/{game_id}/segments")
async def get_segments(
    game_id: int,
    user_id: str = Depends(get_user_id),
    svc: GameService = Depends(get_game_service),
):
    """All segments of a game in narrative order."""
    segments = await svc.get_segments(game_id, user_id)
    return success([s.model_dump(mode="json") for s in segments])
