"""Server-authoritative turn progression rules."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from storyloom.engine.state_machine import FlowState
from storyloom.models.game import GameStatus, NarrativeStage

log = logging.getLogger(__name__)

# upper bounds of turn_count / total_turns for each stage
STAGE_THRESHOLDS: tuple[tuple[float, NarrativeStage], ...] = (
    (0.2, NarrativeStage.INTRODUCTION),
    (0.5, NarrativeStage.RISING_ACTION),
    (0.8, NarrativeStage.CLIMAX),
    (1.0, NarrativeStage.FALLING_ACTION),
)


def narrative_stage(turn_count: int, total_turns: int) -> NarrativeStage:
    """Arc stage for a turn fraction.  Only selects prompt framing."""
    if total_turns <= 0:
        return NarrativeStage.RESOLUTION
    fraction = turn_count / total_turns
    for bound, stage in STAGE_THRESHOLDS:
        if fraction < bound:
            return stage
    return NarrativeStage.RESOLUTION


def is_final_turn(turn_count: int, total_turns: int) -> bool:
    return turn_count >= total_turns


def should_complete(turn_count: int, total_turns: int, provider_completed: bool) -> bool:
    """The provider signalling an ending or running out of turns both end the game."""
    return provider_completed or is_final_turn(turn_count, total_turns)


@dataclass(frozen=True)
class TurnOutcome:
    turn_count: int
    status: GameStatus
    stage: NarrativeStage

    @property
    def completed(self) -> bool:
        return self.status == GameStatus.COMPLETED


def advance_turn(
    turn_count: int,
    total_turns: int,
    status: GameStatus,
    provider_completed: bool,
) -> TurnOutcome:
    """Result of one successful generation: exactly one more turn, maybe completion."""
    next_turn = turn_count + 1
    if status == GameStatus.COMPLETED or should_complete(next_turn, total_turns, provider_completed):
        new_status = GameStatus.COMPLETED
    else:
        new_status = status
    return TurnOutcome(
        turn_count=next_turn,
        status=new_status,
        stage=narrative_stage(next_turn, total_turns),
    )


def check_completion(
    turn_count: int,
    total_turns: int,
    status: GameStatus,
    provider_completed: bool = False,
) -> GameStatus:
    """Status after a completion check.  Idempotent; never touches the turn count."""
    if status == GameStatus.COMPLETED:
        return status
    if should_complete(turn_count, total_turns, provider_completed):
        log.info("Game reached completion at turn %d/%d", turn_count, total_turns)
        return GameStatus.COMPLETED
    return status


def flow_state_for(status: GameStatus, has_initial_story: bool) -> FlowState:
    """Where the client should land for a game in this server state."""
    if status == GameStatus.COMPLETED:
        return FlowState.COMPLETED
    if status == GameStatus.ABANDONED:
        return FlowState.IDLE
    if not has_initial_story:
        return FlowState.INITIALIZING
    return FlowState.PLAYING
