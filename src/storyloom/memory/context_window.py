from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from storyloom.memory.tokens import estimate_tokens
from storyloom.models.context import StoryContext
from storyloom.models.game import StorySegment

log = logging.getLogger(__name__)


class _HasInitialStory(Protocol):
    initial_story: Optional[str]


def segment_tokens(segment: StorySegment) -> int:
    """Token estimate of a segment as it appears in a prompt."""
    chosen = segment.chosen_option
    return (
        estimate_tokens(segment.title)
        + estimate_tokens(segment.content)
        + estimate_tokens(chosen.text if chosen else None)
    )


@dataclass
class ContextWindow:
    """Bounded context selector for story continuation prompts.

    Keeps the most recent half of the window verbatim, samples the older
    chapters at a fixed stride, then trims oldest-first until the token
    estimate fits.  The newest chapter is never dropped.  Deterministic: the
    same inputs always select the same chapters.
    """

    max_segments: int = 16
    max_tokens: int = 6000

    def __post_init__(self) -> None:
        if self.max_segments <= 0:
            raise ValueError(f"max_segments must be positive, got {self.max_segments}")

    def select(self, segments: Sequence[StorySegment]) -> list[StorySegment]:
        """Choose which segments enter the window (before token trimming)."""
        ordered = sorted(segments, key=lambda s: s.sequence_number)
        if len(ordered) <= self.max_segments:
            return ordered

        recent_count = math.ceil(self.max_segments / 2)
        recent = ordered[-recent_count:]
        earlier = ordered[:-recent_count]
        remaining_slots = self.max_segments - recent_count

        sampled: list[StorySegment] = []
        if remaining_slots > 0:
            stride = max(1, len(earlier) // remaining_slots)
            sampled = earlier[::stride][:remaining_slots]

        return sorted(sampled + recent, key=lambda s: s.sequence_number)

    def build(
        self,
        game: _HasInitialStory,
        segments: Sequence[StorySegment],
    ) -> StoryContext:
        initial_story = game.initial_story or ""
        base_tokens = estimate_tokens(initial_story)

        selected = self.select(segments)
        costs = [segment_tokens(s) for s in selected]
        total = base_tokens + sum(costs)

        while total > self.max_tokens and len(selected) > 1:
            dropped = selected.pop(0)
            total -= costs.pop(0)
            log.debug("Context over budget, dropped chapter %d", dropped.sequence_number)

        if total > self.max_tokens:
            log.warning(
                "Context still over budget (%d > %d tokens) with only the latest chapter left",
                total, self.max_tokens,
            )

        log.info(
            "Built context: %d/%d segments, ~%d tokens (budget %d)",
            len(selected), len(segments), total, self.max_tokens,
        )
        return StoryContext(
            initial_story=initial_story,
            segments=selected,
            estimated_tokens=total,
        )


def build_context(
    game: _HasInitialStory,
    all_segments: Sequence[StorySegment],
    max_segments: int,
    max_tokens: int,
) -> StoryContext:
    """Assemble the bounded context for the next prompt of *game*."""
    return ContextWindow(max_segments=max_segments, max_tokens=max_tokens).build(
        game, all_segments
    )
