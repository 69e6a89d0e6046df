from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from storyloom.api.dependencies import (
    generation_options,
    get_api_key,
    get_story_service,
    get_user_id,
)
from storyloom.api.responses import game_payload, success
from storyloom.services.story import StoryService

log = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["story"])


class GenerationRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    preferred_provider: Optional[str] = None
    preferred_model: Optional[str] = None


class SegmentRequest(GenerationRequest):
    option_id: Optional[int] = None
    option_text: Optional[str] = None


@router.post("/games/{game_id}/start")
async def start_game(
    game_id: int,
    body: Optional[GenerationRequest] = None,
    user_id: str = Depends(get_user_id),
    api_key: Optional[str] = Depends(get_api_key),
    svc: StoryService = Depends(get_story_service),
):
    """Generate the initial story and the first segment."""
    body = body or GenerationRequest()
    options = generation_options(api_key, body.preferred_provider, body.preferred_model)
    game, first_segment = await svc.start(game_id, user_id, options)
    return success({
        "game": game_payload(game),
        "firstSegment": first_segment.model_dump(mode="json"),
    })


@router.post("/games/{game_id}/segments", status_code=201)
async def create_segment(
    game_id: int,
    body: SegmentRequest,
    user_id: str = Depends(get_user_id),
    api_key: Optional[str] = Depends(get_api_key),
    svc: StoryService = Depends(get_story_service),
):
    """Generate the next segment from the player's choice."""
    log.info("Creating new segment for game %d, user %s", game_id, user_id)
    options = generation_options(api_key, body.preferred_provider, body.preferred_model)
    game, segment = await svc.generate_next_segment(
        game_id, user_id, options, option_id=body.option_id, option_text=body.option_text
    )
    return success({
        "game": game_payload(game),
        "segment": segment.model_dump(mode="json"),
    })


@router.post("/games/{game_id}/summary")
async def create_summary(
    game_id: int,
    body: Optional[GenerationRequest] = None,
    user_id: str = Depends(get_user_id),
    api_key: Optional[str] = Depends(get_api_key),
    svc: StoryService = Depends(get_story_service),
):
    """Summarize a completed game (returns the stored summary if one exists)."""
    body = body or GenerationRequest()
    options = generation_options(api_key, body.preferred_provider, body.preferred_model)
    game = await svc.generate_game_summary(game_id, user_id, options)
    return success(game_payload(game))


@router.post("/segments/{segment_id}/options/{option_id}/choose")
async def choose_option(
    segment_id: int,
    option_id: int,
    user_id: str = Depends(get_user_id),
    svc: StoryService = Depends(get_story_service),
):
    option = await svc.choose_option(segment_id, option_id, user_id)
    return success(option.model_dump(mode="json"))
