from __future__ import annotations

from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class SegmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class Message(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class GenerationOptions(BaseModel):
    """Per-request provider selection.  Never persisted."""

    provider: str = ""
    model_id: str = ""
    api_key: str = Field(default="", repr=False)
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


class PromptData(BaseModel):
    """Rendered messages plus sampling hints for one generation call."""

    messages: List[Message]
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    is_ending: bool = False

    def as_dicts(self) -> list[dict[str, str]]:
        return [m.model_dump() for m in self.messages]


class ParsedOption(BaseModel):
    text: str
    risk: Optional[str] = None  # only set by the richer narrative schema


class ParsedItem(BaseModel):
    name: str
    description: str = ""


class ParsedCharacter(BaseModel):
    name: str
    description: str = ""
    relationship: str = "NEUTRAL"


class ParsedSegment(BaseModel):
    """Normalized output of one generation call."""

    title: str = ""
    content: str
    options: List[ParsedOption] = Field(default_factory=list)
    status: SegmentStatus = SegmentStatus.ACTIVE
    location_context: Optional[str] = None
    new_items: List[ParsedItem] = Field(default_factory=list)
    new_characters: List[ParsedCharacter] = Field(default_factory=list)

    @property
    def option_texts(self) -> list[str]:
        return [o.text for o in self.options]

    @property
    def is_completed(self) -> bool:
        return self.status == SegmentStatus.COMPLETED


class ParsedSummary(BaseModel):
    title: str = "Adventure Summary"
    content: str
    key_moments: List[str] = Field(default_factory=list)
    theme: str = "Adventure"


class ModelInfo(BaseModel):
    id: str
    name: str
    provider: str
    context_window: int
    created: Optional[float] = None
    owned_by: Optional[str] = None
