from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class DBGame(Base):
    __tablename__ = "games"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    genre: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    turn_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_turns: Mapped[int] = mapped_column(Integer, default=16, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="ACTIVE", nullable=False)
    initial_story: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ending_summary: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    last_played_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    segments: Mapped[list[DBStorySegment]] = relationship(
        back_populates="game",
        cascade="all, delete-orphan",
        order_by="DBStorySegment.sequence_number",
    )


class DBStorySegment(Base):
    __tablename__ = "story_segments"
    __table_args__ = (UniqueConstraint("game_id", "sequence_number"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    game_id: Mapped[int] = mapped_column(ForeignKey("games.id"), nullable=False)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(255), default="")
    content: Mapped[str] = mapped_column(Text, nullable=False)
    user_choice: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location_context: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    new_items: Mapped[list] = mapped_column(JSON, default=list)
    new_characters: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    game: Mapped[DBGame] = relationship(back_populates="segments")
    options: Mapped[list[DBOption]] = relationship(
        back_populates="segment",
        cascade="all, delete-orphan",
        order_by="DBOption.id",
    )


class DBOption(Base):
    __tablename__ = "options"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    segment_id: Mapped[int] = mapped_column(ForeignKey("story_segments.id"), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    risk: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    was_chosen: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    segment: Mapped[DBStorySegment] = relationship(back_populates="options")


class DBContextConfig(Base):
    __tablename__ = "context_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    max_segments: Mapped[int] = mapped_column(Integer, default=16, nullable=False)
    max_tokens: Mapped[int] = mapped_column(Integer, default=6000, nullable=False)
