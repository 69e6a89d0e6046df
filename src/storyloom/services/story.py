from __future__ import annotations

import logging
from typing import Optional

from storyloom.config import settings
from storyloom.db.repository import GameRepository
from storyloom.engine.locks import GameLocks
from storyloom.engine.state_machine import FlowState
from storyloom.engine.turns import advance_turn, flow_state_for, is_final_turn, narrative_stage
from storyloom.errors import InvalidChoiceError, StateTransitionError
from storyloom.llm.context_windows import context_window_for
from storyloom.llm.gateway import GenerationGateway
from storyloom.memory.context_window import build_context
from storyloom.models.game import EndingSummary, Game, GameStatus, Option, StorySegment
from storyloom.models.generation import GenerationOptions
from storyloom.prompts.builder import StoryPrompts

log = logging.getLogger(__name__)

OPENING_CHOICE = "Begin the story"


class StoryService:
    """Runs one generation step per call: load, prompt, generate, commit.

    Pipeline for a turn:
    1. load the game, its segments and the user's context preference
    2. assemble a bounded context under the model's token budget
    3. render the stage-appropriate prompt and call the gateway
    4. apply the turn rules and persist everything in one ``commit_turn``

    A failed provider call or unparseable reply leaves the game untouched,
    so the player simply retries into the same slot.
    """

    def __init__(
        self,
        gateway: GenerationGateway,
        repo: GameRepository | None = None,
        prompts: StoryPrompts | None = None,
        locks: GameLocks | None = None,
    ):
        self._gateway = gateway
        self._repo = repo or GameRepository()
        self._prompts = prompts or StoryPrompts()
        self._locks = locks or GameLocks()

    # ── initial story ───────────────────────────────────────────────────

    async def generate_initial_story(
        self,
        game_id: int,
        user_id: str,
        options: GenerationOptions,
    ) -> Game:
        game = await self._repo.get_game_by_id(game_id, user_id)
        if game.initial_story:
            log.debug("Game %d already has an initial story, skipping generation", game_id)
            return game

        log.info("Generating initial story for game %d, genre: %s", game_id, game.genre)
        async with self._locks.hold(game_id):
            parsed = await self._gateway.generate(options, self._prompts.initial_story(game.genre))
            game = await self._repo.set_initial_story(game_id, parsed.content)
            if parsed.title and parsed.title != game.title:
                game = await self._repo.set_title(game_id, parsed.title)
        return game

    async def start(
        self,
        game_id: int,
        user_id: str,
        options: GenerationOptions,
    ) -> tuple[Game, StorySegment]:
        """Initial story plus first segment.  Safe to call again on a started game."""
        game = await self.generate_initial_story(game_id, user_id, options)
        segments = await self._repo.get_segments(game_id)
        if segments:
            return game, segments[-1]
        return await self.generate_next_segment(game_id, user_id, options)

    # ── turns ───────────────────────────────────────────────────────────

    def _context_budget(self, options: GenerationOptions, preferred: int) -> int:
        """Preferred token budget, capped by what the model can take besides its answer."""
        window = context_window_for(options.model_id, options.provider)
        response_tokens = options.max_tokens or settings.default_max_tokens
        return max(1, min(preferred, window - response_tokens))

    @staticmethod
    def _resolve_choice(
        latest: StorySegment,
        option_id: Optional[int],
        option_text: Optional[str],
    ) -> tuple[str, Optional[Option]]:
        if option_id is not None:
            option = next((o for o in latest.options if o.id == option_id), None)
            if option is None:
                raise InvalidChoiceError("Option does not belong to the latest story segment")
            return option.text, option
        if option_text and option_text.strip():
            return option_text.strip(), None
        raise InvalidChoiceError("Either optionId or optionText must be provided")

    async def generate_next_segment(
        self,
        game_id: int,
        user_id: str,
        options: GenerationOptions,
        option_id: Optional[int] = None,
        option_text: Optional[str] = None,
    ) -> tuple[Game, StorySegment]:
        async with self._locks.hold(game_id):
            game = await self._repo.get_game_by_id(game_id, user_id)
            if game.status != GameStatus.ACTIVE or not game.initial_story:
                raise StateTransitionError(
                    flow_state_for(game.status, bool(game.initial_story)).value,
                    FlowState.PLAYING.value,
                )

            segments = await self._repo.get_segments(game_id)
            latest = segments[-1] if segments else None
            user_choice, chosen = (None, None)
            if latest is not None:
                user_choice, chosen = self._resolve_choice(latest, option_id, option_text)

            next_turn = game.turn_count + 1
            is_ending = is_final_turn(next_turn, game.total_turns)
            sequence_number = latest.sequence_number + 1 if latest else 1

            if latest is None and not is_ending:
                prompt = self._prompts.first_segment(game.genre, game.initial_story)
            else:
                config = await self._repo.get_context_config(user_id)
                context = build_context(
                    game,
                    segments,
                    max_segments=config.max_segments,
                    max_tokens=self._context_budget(options, config.max_tokens),
                )
                prompt = self._prompts.next_segment(
                    game.genre,
                    context,
                    user_choice or OPENING_CHOICE,
                    chapter_number=sequence_number,
                    total_turns=game.total_turns,
                    stage=narrative_stage(next_turn, game.total_turns),
                    is_ending=is_ending,
                )

            log.info(
                "Generating %s segment for game %d. Turn %d/%d",
                "final" if is_ending else "first" if latest is None else "next",
                game_id, next_turn, game.total_turns,
            )
            parsed = await self._gateway.generate(options, prompt)

            outcome = advance_turn(game.turn_count, game.total_turns, game.status, parsed.is_completed)
            if not outcome.completed and not parsed.options:
                log.warning("Generated non-final segment without options for game %d", game_id)

            game, segment = await self._repo.commit_turn(
                game_id,
                game.version,
                outcome,
                sequence_number=sequence_number,
                title=parsed.title or f"Part {sequence_number}",
                content=parsed.content,
                user_choice=user_choice,
                options=[] if outcome.completed else parsed.options,
                chosen_option_id=chosen.id if chosen else None,
                chosen_segment_id=latest.id if chosen and latest else None,
                location_context=parsed.location_context,
                new_items=parsed.new_items,
                new_characters=parsed.new_characters,
            )
        if outcome.completed:
            log.info("Marking game %d as COMPLETED at turn %d", game_id, game.turn_count)
        return game, segment

    async def choose_option(self, segment_id: int, option_id: int, user_id: str) -> Option:
        return await self._repo.mark_option_chosen(segment_id, option_id, user_id)

    # ── summary ─────────────────────────────────────────────────────────

    async def generate_game_summary(
        self,
        game_id: int,
        user_id: str,
        options: GenerationOptions,
    ) -> Game:
        game = await self._repo.get_game_by_id(game_id, user_id)
        if game.status != GameStatus.COMPLETED:
            raise StateTransitionError(
                flow_state_for(game.status, bool(game.initial_story)).value,
                FlowState.COMPLETED.value,
            )
        if game.summary:
            log.debug("Game %d already has a summary, returning existing data", game_id)
            return game

        log.info("Generating summary for completed game %d", game_id)
        segments = await self._repo.get_segments(game_id)
        prompt = self._prompts.game_summary(game.genre, game.initial_story or "", segments)
        parsed = await self._gateway.generate_summary(options, prompt)
        return await self._repo.set_summary(
            game_id,
            EndingSummary(
                title=parsed.title,
                content=parsed.content,
                key_moments=parsed.key_moments,
                theme=parsed.theme,
            ),
        )
