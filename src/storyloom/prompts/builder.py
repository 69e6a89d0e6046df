"""Message lists for each story generation step."""

from __future__ import annotations

import secrets
import time
from typing import Optional, Sequence

from storyloom.models.context import StoryContext
from storyloom.models.game import NarrativeStage, StorySegment
from storyloom.models.generation import Message, PromptData
from storyloom.prompts.loader import PromptLoader

CATEGORY = "story"

# initial stories are longer than chapters
INITIAL_STORY_MAX_TOKENS = 2000
SUMMARY_MAX_TOKENS = 1000


def unique_id() -> str:
    """Per-prompt marker so providers never serve a cached completion."""
    return f"uid_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


def format_full_story(segments: Sequence[StorySegment]) -> str:
    return "\n\n".join(
        f'Chapter {s.sequence_number}: "{s.title or "Untitled"}"\n{s.content}'
        for s in sorted(segments, key=lambda s: s.sequence_number)
    )


class StoryPrompts:
    def __init__(self, loader: Optional[PromptLoader] = None):
        self.loader = loader or PromptLoader()

    def _messages(self, name: str, genre: str, **variables: object) -> list[Message]:
        return [
            Message(role="system", content=self.loader.render(CATEGORY, f"{name}_system", genre=genre)),
            Message(role="user", content=self.loader.render(CATEGORY, name, genre=genre, **variables)),
        ]

    def stage_guidance(self, stage: NarrativeStage) -> str:
        return self.loader.render(CATEGORY, f"stage_{stage.value.lower()}")

    def initial_story(self, genre: str) -> PromptData:
        content = self.loader.render(CATEGORY, "initial_story", genre=genre, unique_id=unique_id())
        return PromptData(
            messages=[Message(role="user", content=content)],
            max_tokens=INITIAL_STORY_MAX_TOKENS,
        )

    def first_segment(self, genre: str, initial_story: str) -> PromptData:
        return PromptData(
            messages=self._messages(
                "first_segment",
                genre,
                initial_story=initial_story,
                stage_guidance=self.stage_guidance(NarrativeStage.INTRODUCTION),
            )
        )

    def next_segment(
        self,
        genre: str,
        context: StoryContext,
        user_choice: str,
        *,
        chapter_number: int,
        total_turns: int,
        stage: NarrativeStage,
        is_ending: bool = False,
    ) -> PromptData:
        """Continuation prompt; *is_ending* switches to the final-chapter template."""
        if is_ending:
            messages = self._messages(
                "final_segment",
                genre,
                initial_story=context.initial_story,
                previous_chapters=context.to_prompt_text(),
                user_choice=user_choice,
            )
        else:
            messages = self._messages(
                "next_segment",
                genre,
                initial_story=context.initial_story,
                previous_chapters=context.to_prompt_text(),
                user_choice=user_choice,
                chapter_number=chapter_number,
                total_turns=total_turns,
                stage_guidance=self.stage_guidance(stage),
            )
        return PromptData(messages=messages, is_ending=is_ending)

    def game_summary(
        self,
        genre: str,
        initial_story: str,
        segments: Sequence[StorySegment],
    ) -> PromptData:
        return PromptData(
            messages=self._messages(
                "game_summary",
                genre,
                initial_story=initial_story,
                full_story=format_full_story(segments),
            ),
            max_tokens=SUMMARY_MAX_TOKENS,
        )
