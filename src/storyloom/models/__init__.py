from storyloom.models.game import (
    ContextConfig,
    EndingSummary,
    Game,
    GameStatus,
    NarrativeStage,
    Option,
    StorySegment,
)
from storyloom.models.generation import (
    GenerationOptions,
    Message,
    ModelInfo,
    ParsedCharacter,
    ParsedItem,
    ParsedOption,
    ParsedSegment,
    ParsedSummary,
    PromptData,
    SegmentStatus,
)
from storyloom.models.context import StoryContext

__all__ = [
    "ContextConfig",
    "EndingSummary",
    "Game",
    "GameStatus",
    "NarrativeStage",
    "Option",
    "StorySegment",
    "GenerationOptions",
    "Message",
    "ModelInfo",
    "ParsedCharacter",
    "ParsedItem",
    "ParsedOption",
    "ParsedSegment",
    "ParsedSummary",
    "PromptData",
    "SegmentStatus",
    "StoryContext",
]
