from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from storyloom.api.dependencies import get_game_service, get_user_id
from storyloom.api.responses import success
from storyloom.services.game import GameService

router = APIRouter(prefix="/api/context-config", tags=["context"])


class ContextConfigRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    max_segments: Optional[int] = Field(default=None, ge=1)
    max_tokens: Optional[int] = Field(default=None, ge=1)


@router.get("")
async def get_context_config(
    user_id: str = Depends(get_user_id),
    svc: GameService = Depends(get_game_service),
):
    config = await svc.get_context_config(user_id)
    return success(config.model_dump())


@router.put("")
async def update_context_config(
    body: ContextConfigRequest,
    user_id: str = Depends(get_user_id),
    svc: GameService = Depends(get_game_service),
):
    """Update how much story history feeds each prompt."""
    config = await svc.update_context_config(user_id, body.max_segments, body.max_tokens)
    return success(config.model_dump())
