from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from storyloom.models.generation import ParsedCharacter, ParsedItem


class GameStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    ABANDONED = "ABANDONED"


class NarrativeStage(str, Enum):
    """Arc position of a game, derived from the turn fraction."""

    INTRODUCTION = "INTRODUCTION"
    RISING_ACTION = "RISING_ACTION"
    CLIMAX = "CLIMAX"
    FALLING_ACTION = "FALLING_ACTION"
    RESOLUTION = "RESOLUTION"


class Option(BaseModel):
    """A selectable continuation offered after a segment."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    segment_id: int
    text: str
    risk: Optional[str] = None
    was_chosen: bool = False


class StorySegment(BaseModel):
    """One narrative turn: generated text plus its options."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    game_id: int
    sequence_number: int = Field(ge=1)
    title: str = ""
    content: str
    user_choice: Optional[str] = None
    options: List[Option] = Field(default_factory=list)
    location_context: Optional[str] = None
    new_items: List[ParsedItem] = Field(default_factory=list)
    new_characters: List[ParsedCharacter] = Field(default_factory=list)

    @property
    def chosen_option(self) -> Optional[Option]:
        return next((o for o in self.options if o.was_chosen), None)


class EndingSummary(BaseModel):
    title: str = "Adventure Summary"
    content: str = ""
    key_moments: List[str] = Field(default_factory=list)
    theme: str = "Adventure"


class Game(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    genre: str
    title: str
    turn_count: int = 0
    total_turns: int = 16
    status: GameStatus = GameStatus.ACTIVE
    initial_story: Optional[str] = None
    summary: Optional[str] = None
    ending_summary: Optional[EndingSummary] = None
    version: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_played_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def narrative_stage(self) -> NarrativeStage:
        from storyloom.engine.turns import narrative_stage

        return narrative_stage(self.turn_count, self.total_turns)

    @property
    def is_completed(self) -> bool:
        return self.status == GameStatus.COMPLETED


class ContextConfig(BaseModel):
    """Per-user preference bounding the context window."""

    model_config = ConfigDict(from_attributes=True)

    max_segments: int = Field(default=16, ge=1)
    max_tokens: int = Field(default=6000, ge=1)
