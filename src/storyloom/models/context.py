from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from storyloom.models.game import StorySegment


class StoryContext(BaseModel):
    """The bounded slice of a game that is fed back to the LLM."""

    initial_story: str = ""
    segments: List[StorySegment] = Field(default_factory=list)
    estimated_tokens: int = 0

    def to_prompt_text(self) -> str:
        """Render the selected chapters as a plain-text block for prompt injection."""
        parts = []
        for seg in self.segments:
            chosen = seg.chosen_option
            lines = [f'Chapter {seg.sequence_number}: "{seg.title or "Untitled"}"', seg.content]
            if chosen is not None:
                lines.append(f'Player chose: "{chosen.text}"')
            parts.append("\n".join(lines))
        return "\n\n".join(parts)
