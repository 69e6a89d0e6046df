"""Persistence collaborator for games, segments, options and context configs.

Every public method opens its own short session.  Generation never runs with
a session open: services read, release, call the provider, then write the
whole turn back through :meth:`GameRepository.commit_turn`.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from storyloom.config import settings
from storyloom.db.database import async_session
from storyloom.db.tables import DBContextConfig, DBGame, DBOption, DBStorySegment
from storyloom.engine.turns import TurnOutcome
from storyloom.errors import GameBusyError, GameNotFoundError, InvalidChoiceError
from storyloom.models.game import (
    ContextConfig,
    EndingSummary,
    Game,
    GameStatus,
    Option,
    StorySegment,
)
from storyloom.models.generation import ParsedCharacter, ParsedItem, ParsedOption

log = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_segment(
    game_id: int,
    sequence_number: int,
    title: str,
    content: str,
    user_choice: Optional[str],
    options: Sequence[ParsedOption],
    location_context: Optional[str] = None,
    new_items: Sequence[ParsedItem] = (),
    new_characters: Sequence[ParsedCharacter] = (),
) -> DBStorySegment:
    return DBStorySegment(
        game_id=game_id,
        sequence_number=sequence_number,
        title=title,
        content=content,
        user_choice=user_choice,
        location_context=location_context,
        new_items=[i.model_dump() for i in new_items],
        new_characters=[c.model_dump() for c in new_characters],
        options=[DBOption(text=o.text, risk=o.risk) for o in options],
    )


class GameRepository:
    def __init__(self, sessions: Optional[async_sessionmaker[AsyncSession]] = None):
        self._sessions = sessions or async_session

    # ── games ───────────────────────────────────────────────────────────

    async def create_game(
        self,
        user_id: str,
        genre: str,
        title: Optional[str] = None,
        total_turns: Optional[int] = None,
    ) -> Game:
        row = DBGame(
            user_id=user_id,
            genre=genre,
            title=title or f"{genre.title()} Adventure",
            total_turns=total_turns or settings.default_total_turns,
            status=GameStatus.ACTIVE.value,
        )
        async with self._sessions() as db:
            db.add(row)
            await db.commit()
        log.info("Created game %d (%s) for user %s", row.id, genre, user_id)
        return Game.model_validate(row)

    async def _load_game(self, db: AsyncSession, game_id: int, user_id: Optional[str]) -> DBGame:
        row = await db.get(DBGame, game_id)
        if row is None or (user_id is not None and row.user_id != user_id):
            raise GameNotFoundError(f"Game with ID {game_id} not found")
        return row

    async def get_game_by_id(self, game_id: int, user_id: Optional[str] = None) -> Game:
        """Load one game; *user_id* scopes the lookup to its owner."""
        async with self._sessions() as db:
            return Game.model_validate(await self._load_game(db, game_id, user_id))

    async def list_games(
        self,
        user_id: str,
        status: Optional[GameStatus] = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Game], int]:
        """One page of a user's games, most recently played first, plus the total count."""
        query = select(DBGame).where(DBGame.user_id == user_id)
        if status is not None:
            query = query.where(DBGame.status == GameStatus(status).value)
        count_query = select(func.count()).select_from(query.subquery())
        page = max(page, 1)
        async with self._sessions() as db:
            total = (await db.execute(count_query)).scalar_one()
            result = await db.execute(
                query.order_by(DBGame.last_played_at.desc(), DBGame.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            games = [Game.model_validate(g) for g in result.scalars().all()]
        return games, total

    async def delete_game(self, game_id: int, user_id: Optional[str] = None) -> None:
        async with self._sessions() as db:
            row = await self._load_game(db, game_id, user_id)
            # segments and their options go with the game via the ORM cascade
            await db.delete(row)
            await db.commit()
        log.info("Deleted game %d", game_id)

    async def _update_game(self, game_id: int, **values) -> Game:
        async with self._sessions() as db:
            row = await self._load_game(db, game_id, None)
            for key, value in values.items():
                setattr(row, key, value)
            await db.commit()
            return Game.model_validate(row)

    async def set_initial_story(self, game_id: int, initial_story: str) -> Game:
        return await self._update_game(game_id, initial_story=initial_story, last_played_at=_now())

    async def set_title(self, game_id: int, title: str) -> Game:
        return await self._update_game(game_id, title=title)

    async def set_summary(self, game_id: int, summary: EndingSummary) -> Game:
        return await self._update_game(
            game_id,
            summary=summary.content,
            ending_summary=summary.model_dump(),
        )

    # ── segments ────────────────────────────────────────────────────────

    async def get_segments(self, game_id: int) -> list[StorySegment]:
        async with self._sessions() as db:
            result = await db.execute(
                select(DBStorySegment)
                .where(DBStorySegment.game_id == game_id)
                .order_by(DBStorySegment.sequence_number)
                .options(selectinload(DBStorySegment.options))
            )
            return [StorySegment.model_validate(s) for s in result.scalars().all()]

    async def create_segment(
        self,
        game_id: int,
        sequence_number: int,
        title: str,
        content: str,
        user_choice: Optional[str] = None,
        options: Sequence[ParsedOption] = (),
    ) -> StorySegment:
        """Insert a segment without touching the turn counter."""
        row = _new_segment(game_id, sequence_number, title, content, user_choice, options)
        async with self._sessions() as db:
            await self._load_game(db, game_id, None)
            db.add(row)
            await db.commit()
            return StorySegment.model_validate(row)

    async def mark_option_chosen(
        self,
        segment_id: int,
        option_id: int,
        user_id: Optional[str] = None,
    ) -> Option:
        """Flag *option_id* as the choice made at *segment_id*.

        Choosing is set-once: re-choosing the same option is a no-op, choosing
        a second option of the same segment is rejected.
        """
        async with self._sessions() as db:
            segment = await db.get(
                DBStorySegment, segment_id, options=[selectinload(DBStorySegment.options)]
            )
            if segment is None:
                raise InvalidChoiceError(f"Story segment {segment_id} not found")
            await self._load_game(db, segment.game_id, user_id)
            self._choose(segment, option_id)
            await db.commit()
            option = next(o for o in segment.options if o.id == option_id)
            return Option.model_validate(option)

    @staticmethod
    def _choose(segment: DBStorySegment, option_id: int) -> None:
        option = next((o for o in segment.options if o.id == option_id), None)
        if option is None:
            raise InvalidChoiceError(
                f"Option {option_id} does not belong to story segment {segment.id}"
            )
        already = next((o for o in segment.options if o.was_chosen), None)
        if already is not None and already.id != option_id:
            raise InvalidChoiceError(
                f"Story segment {segment.id} already has chosen option {already.id}"
            )
        option.was_chosen = True

    # ── turns ───────────────────────────────────────────────────────────

    async def increment_turn_count(
        self,
        db: AsyncSession,
        game_id: int,
        expected_version: int,
        outcome: TurnOutcome,
    ) -> None:
        """Apply *outcome* if nobody else advanced the game since it was read.

        Only called from :meth:`commit_turn`, inside its transaction.
        """
        result = await db.execute(
            update(DBGame)
            .where(DBGame.id == game_id, DBGame.version == expected_version)
            .values(
                turn_count=DBGame.turn_count + 1,
                status=outcome.status.value,
                version=DBGame.version + 1,
                last_played_at=_now(),
            )
        )
        if result.rowcount != 1:
            raise GameBusyError(
                f"Game {game_id} was advanced concurrently (expected version {expected_version})"
            )

    async def commit_turn(
        self,
        game_id: int,
        expected_version: int,
        outcome: TurnOutcome,
        *,
        sequence_number: int,
        title: str,
        content: str,
        user_choice: Optional[str],
        options: Sequence[ParsedOption],
        chosen_option_id: Optional[int] = None,
        chosen_segment_id: Optional[int] = None,
        location_context: Optional[str] = None,
        new_items: Sequence[ParsedItem] = (),
        new_characters: Sequence[ParsedCharacter] = (),
    ) -> tuple[Game, StorySegment]:
        """Persist one generated turn atomically.

        Turn increment, status change, the previous segment's chosen option
        and the new segment land in one transaction or not at all.
        """
        async with self._sessions() as db:
            async with db.begin():
                await self.increment_turn_count(db, game_id, expected_version, outcome)
                if chosen_option_id is not None and chosen_segment_id is not None:
                    previous = await db.get(
                        DBStorySegment,
                        chosen_segment_id,
                        options=[selectinload(DBStorySegment.options)],
                    )
                    if previous is None:
                        raise InvalidChoiceError(f"Story segment {chosen_segment_id} not found")
                    self._choose(previous, chosen_option_id)
                segment = _new_segment(
                    game_id,
                    sequence_number,
                    title,
                    content,
                    user_choice,
                    options,
                    location_context=location_context,
                    new_items=new_items,
                    new_characters=new_characters,
                )
                db.add(segment)
            game = await db.get(DBGame, game_id, populate_existing=True)
            log.info(
                "Committed turn %d/%d for game %d (segment %d, status %s)",
                game.turn_count, game.total_turns, game_id, sequence_number, game.status,
            )
            return Game.model_validate(game), StorySegment.model_validate(segment)

    # ── context config ──────────────────────────────────────────────────

    async def get_context_config(self, user_id: str) -> ContextConfig:
        """The user's window preference, or the settings defaults."""
        async with self._sessions() as db:
            row = (
                await db.execute(select(DBContextConfig).where(DBContextConfig.user_id == user_id))
            ).scalar_one_or_none()
        if row is None:
            return ContextConfig(
                max_segments=settings.default_max_segments,
                max_tokens=settings.context_max_tokens,
            )
        return ContextConfig.model_validate(row)

    async def set_context_config(self, user_id: str, config: ContextConfig) -> ContextConfig:
        async with self._sessions() as db:
            row = (
                await db.execute(select(DBContextConfig).where(DBContextConfig.user_id == user_id))
            ).scalar_one_or_none()
            if row is None:
                row = DBContextConfig(user_id=user_id)
                db.add(row)
            row.max_segments = config.max_segments
            row.max_tokens = config.max_tokens
            await db.commit()
            return ContextConfig.model_validate(row)
