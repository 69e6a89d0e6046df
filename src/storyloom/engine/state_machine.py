"""Game lifecycle state machine, shared by the server and the client mirror."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Optional

from storyloom.errors import StateTransitionError

log = logging.getLogger(__name__)


class FlowState(str, Enum):
    IDLE = "idle"                  # launcher screen
    BROWSING = "browsing"          # browsing saved games
    CREATING = "creating"          # creating a new game
    INITIALIZING = "initializing"  # generating initial content
    PLAYING = "playing"
    COMPLETED = "completed"
    ERROR = "error"


ALLOWED_TRANSITIONS: dict[FlowState, frozenset[FlowState]] = {
    FlowState.IDLE: frozenset({FlowState.BROWSING, FlowState.CREATING}),
    FlowState.BROWSING: frozenset({FlowState.IDLE, FlowState.CREATING, FlowState.INITIALIZING}),
    FlowState.CREATING: frozenset({FlowState.IDLE, FlowState.INITIALIZING}),
    FlowState.INITIALIZING: frozenset({FlowState.PLAYING, FlowState.ERROR, FlowState.IDLE}),
    FlowState.PLAYING: frozenset({FlowState.IDLE, FlowState.COMPLETED, FlowState.ERROR}),
    FlowState.COMPLETED: frozenset({FlowState.IDLE, FlowState.CREATING}),
    FlowState.ERROR: frozenset(
        {FlowState.IDLE, FlowState.BROWSING, FlowState.CREATING, FlowState.PLAYING}
    ),
}

Listener = Callable[[FlowState, FlowState], None]


def can_transition(current: FlowState, target: FlowState) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class GameStateMachine:
    """Enforces the legal lifecycle transitions and notifies listeners."""

    def __init__(self, initial: FlowState = FlowState.IDLE):
        self._state = FlowState(initial)
        self._listeners: list[Listener] = []

    @property
    def state(self) -> FlowState:
        return self._state

    def can(self, target: FlowState) -> bool:
        return can_transition(self._state, FlowState(target))

    def transition(self, target: FlowState) -> bool:
        """Move to *target* if legal.  Illegal moves are logged and ignored."""
        target = FlowState(target)
        if not can_transition(self._state, target):
            log.error("Invalid state transition: %s -> %s", self._state.value, target.value)
            return False
        old, self._state = self._state, target
        for listener in list(self._listeners):
            listener(target, old)
        return True

    def require(self, target: FlowState) -> None:
        """Like :meth:`transition` but raises :class:`StateTransitionError`."""
        if not self.transition(target):
            raise StateTransitionError(self._state.value, FlowState(target).value)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener(new, old)``; returns the unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def reset(self, state: Optional[FlowState] = None) -> None:
        """Force a state without validation (session restore only)."""
        self._state = FlowState(state or FlowState.IDLE)
