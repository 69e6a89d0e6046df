"""Client-side flow coordinator.

Mirrors the server's game lifecycle in a :class:`GameStateMachine`, guards
each operation class against duplicate in-flight calls and simulates
progress while a generation request is pending.  Mirrored state only
changes when the server confirms a result.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from storyloom.client.api import GameApiClient
from storyloom.engine.state_machine import ALLOWED_TRANSITIONS, FlowState, GameStateMachine
from storyloom.engine.turns import flow_state_for
from storyloom.errors import StoryloomError
from storyloom.models.game import GameStatus

log = logging.getLogger(__name__)

GENERIC_ERROR = "Something went wrong. Please try again."

# never passed through on the way to another state
TERMINAL_STATES = frozenset({FlowState.COMPLETED, FlowState.ERROR})


def shortest_route(current: FlowState, target: FlowState) -> list[FlowState]:
    """Legal transition path from *current* to *target* (empty if already there).

    Intermediate steps never pass through COMPLETED or ERROR.
    """
    if current == target:
        return []
    queue = deque([(current, [])])
    seen = {current}
    while queue:
        state, path = queue.popleft()
        for nxt in sorted(ALLOWED_TRANSITIONS[state], key=lambda s: s.value):
            if nxt in seen:
                continue
            if nxt == target:
                return path + [nxt]
            if nxt in TERMINAL_STATES:
                continue
            seen.add(nxt)
            queue.append((nxt, path + [nxt]))
    raise ValueError(f"No route from {current.value} to {target.value}")


class ProgressSimulator:
    """Fake progress bar for requests with no real progress signal.

    Ticks every *interval* seconds towards *ceiling* percent over *duration*
    seconds, jumps to 100 on :meth:`complete` and drops back to 0 after
    *grace* seconds.
    """

    def __init__(
        self,
        duration: float = 15.0,
        interval: float = 0.1,
        ceiling: float = 90.0,
        grace: float = 0.5,
        on_change: Optional[Callable[[float], None]] = None,
    ):
        self.duration = duration
        self.interval = interval
        self.ceiling = ceiling
        self.grace = grace
        self.on_change = on_change
        self.progress = 0.0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _set(self, value: float) -> None:
        self.progress = value
        if self.on_change is not None:
            self.on_change(value)

    def _cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def start(self) -> None:
        self._cancel()
        self._set(0.0)
        self._task = asyncio.create_task(self._tick())

    async def _tick(self) -> None:
        step = self.ceiling * self.interval / self.duration
        while self.progress < self.ceiling:
            await asyncio.sleep(self.interval)
            self._set(min(self.ceiling, self.progress + step))

    async def _reset_later(self) -> None:
        await asyncio.sleep(self.grace)
        self._set(0.0)

    def complete(self) -> None:
        self._cancel()
        self._set(100.0)
        self._task = asyncio.create_task(self._reset_later())

    def stop(self) -> None:
        self._cancel()
        self._set(0.0)

    async def aclose(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


@dataclass
class ClientState:
    """What the client currently believes, as last confirmed by the server."""

    games: list[dict] = field(default_factory=list)
    current_game: Optional[dict] = None
    segments: list[dict] = field(default_factory=list)
    error: Optional[str] = None
    error_retryable: bool = False
    processing: bool = False

    @property
    def current_segment(self) -> Optional[dict]:
        return self.segments[-1] if self.segments else None

    @property
    def options(self) -> list[dict]:
        segment = self.current_segment
        return list(segment.get("options", [])) if segment else []


class GameFlowCoordinator:
    def __init__(
        self,
        api: GameApiClient,
        progress: Optional[ProgressSimulator] = None,
        machine: Optional[GameStateMachine] = None,
    ):
        self.api = api
        self.progress = progress or ProgressSimulator()
        self.machine = machine or GameStateMachine()
        self.state = ClientState()
        self._inflight: dict[str, asyncio.Future] = {}
        self._last: dict[str, Any] = {}
        self._followups: deque[Callable[[], Awaitable[Any]]] = deque()

    # ── plumbing ────────────────────────────────────────────────────────

    def is_busy(self, operation: str) -> bool:
        return operation in self._inflight

    async def _single_flight(
        self,
        operation: str,
        call: Callable[[], Awaitable[Any]],
        share: bool = False,
    ) -> Any:
        """Run *call* unless *operation* is already in flight.

        A duplicate caller gets the last result of the operation, or with
        *share* waits for the pending call and receives its result.
        """
        pending = self._inflight.get(operation)
        if pending is not None:
            if share:
                log.debug("%s already in flight, sharing pending result", operation)
                return await asyncio.shield(pending)
            log.info("%s already in flight, returning last result", operation)
            return self._last.get(operation)

        future = asyncio.ensure_future(call())
        self._inflight[operation] = future
        try:
            result = await future
            self._last[operation] = result
            return result
        finally:
            self._inflight.pop(operation, None)

    def _route(self, target: FlowState) -> None:
        for step in shortest_route(self.machine.state, target):
            self.machine.require(step)

    def _fail(self, operation: str, exc: Exception) -> None:
        """Surface *exc* to the player; confirmed state stays as it was."""
        if isinstance(exc, StoryloomError):
            self.state.error = exc.public_message()
            self.state.error_retryable = exc.retryable
        else:
            log.exception("Unexpected failure in %s", operation)
            self.state.error = GENERIC_ERROR
            self.state.error_retryable = True
        log.warning("%s failed: %s", operation, self.state.error)
        if self.machine.can(FlowState.ERROR):
            self.machine.transition(FlowState.ERROR)

    async def _run_followups(self) -> None:
        while self._followups:
            await self._followups.popleft()()

    def _confirm_game(self, game: dict) -> None:
        self.state.current_game = game
        self.state.error = None
        self.state.error_retryable = False

    # ── operations ──────────────────────────────────────────────────────

    async def fetch_games(self, status: Optional[str] = None) -> Optional[list[dict]]:
        if self.machine.state in (FlowState.IDLE, FlowState.ERROR):
            self._route(FlowState.BROWSING)
        try:
            result = await self._single_flight(
                "fetch_games", lambda: self.api.list_games(status=status), share=True
            )
        except Exception as exc:
            self._fail("fetch_games", exc)
            return None
        self.state.games = list(result["games"]) if result else []
        return self.state.games

    async def create_game(
        self,
        genre: str,
        title: Optional[str] = None,
        total_turns: Optional[int] = None,
    ) -> Optional[dict]:
        """Create a game and immediately generate its opening."""
        if self.machine.state != FlowState.CREATING:
            self._route(FlowState.CREATING)
        try:
            game = await self._single_flight(
                "create_game", lambda: self.api.create_game(genre, title, total_turns)
            )
        except Exception as exc:
            self._fail("create_game", exc)
            return None
        if game is None:
            return None
        self._confirm_game(game)
        self.state.segments = []
        self._followups.append(lambda: self.start_game(game["id"]))
        await self._run_followups()
        return self.state.current_game

    async def load_game(self, game_id: int) -> Optional[dict]:
        async def call() -> dict:
            game = await self.api.get_game(game_id)
            segments = await self.api.get_segments(game_id)
            return {"game": game, "segments": segments}

        try:
            result = await self._single_flight("load_game", call)
        except Exception as exc:
            self._fail("load_game", exc)
            return None
        if result is None:
            return None

        game = result["game"]
        self._confirm_game(game)
        self.state.segments = list(result["segments"])
        target = flow_state_for(GameStatus(game["status"]), bool(game.get("initial_story")))
        if target == FlowState.INITIALIZING or (target == FlowState.PLAYING and not self.state.segments):
            self._followups.append(lambda: self.start_game(game_id))
        elif target != FlowState.IDLE:
            self._route(target)
        await self._run_followups()
        return self.state.current_game

    async def start_game(self, game_id: int) -> Optional[dict]:
        if self.is_busy("start_game"):
            return self._last.get("start_game")
        self._route(FlowState.INITIALIZING)
        self.progress.start()
        try:
            result = await self._single_flight("start_game", lambda: self.api.start_game(game_id))
        except Exception as exc:
            self.progress.stop()
            self._fail("start_game", exc)
            return None
        if result is None:
            return None
        self.progress.complete()
        game = result["game"]
        self._confirm_game(game)
        first = result["firstSegment"]
        if not any(s["id"] == first["id"] for s in self.state.segments):
            self.state.segments = [first]
        self._route(FlowState.PLAYING)
        if game["status"] == GameStatus.COMPLETED.value:
            self._route(FlowState.COMPLETED)
        return game

    async def submit_choice(
        self,
        option_id: Optional[int] = None,
        option_text: Optional[str] = None,
    ) -> Optional[dict]:
        """Ask the server for the next segment; nothing is applied before it answers."""
        game = self.state.current_game
        if game is None or self.machine.state not in (FlowState.PLAYING, FlowState.ERROR):
            log.error("submit_choice outside of play (state=%s)", self.machine.state.value)
            return None
        if self.is_busy("submit_choice"):
            return self._last.get("submit_choice")

        self.state.processing = True
        self.progress.start()
        try:
            result = await self._single_flight(
                "submit_choice",
                lambda: self.api.create_segment(game["id"], option_id, option_text),
            )
        except Exception as exc:
            self.progress.stop()
            self._fail("submit_choice", exc)
            return None
        finally:
            self.state.processing = False
        if result is None:
            return None

        self.progress.complete()
        if self.machine.state == FlowState.ERROR:
            self._route(FlowState.PLAYING)
        self._confirm_game(result["game"])
        self._mark_chosen(option_id)
        self.state.segments.append(result["segment"])
        if result["game"]["status"] == GameStatus.COMPLETED.value:
            self._route(FlowState.COMPLETED)
        return result["segment"]

    def _mark_chosen(self, option_id: Optional[int]) -> None:
        latest = self.state.current_segment
        if latest is None or option_id is None:
            return
        latest["options"] = [
            {**o, "was_chosen": True} if o["id"] == option_id else o
            for o in latest.get("options", [])
        ]

    async def request_summary(self) -> Optional[dict]:
        game = self.state.current_game
        if game is None or game["status"] != GameStatus.COMPLETED.value:
            return None
        try:
            updated = await self._single_flight(
                "summary", lambda: self.api.generate_summary(game["id"])
            )
        except Exception as exc:
            # summary failures keep the player on the completion screen
            if isinstance(exc, StoryloomError):
                self.state.error = exc.public_message()
                self.state.error_retryable = exc.retryable
            else:
                log.exception("Unexpected failure in summary")
                self.state.error = GENERIC_ERROR
            return None
        if updated is not None:
            self._confirm_game(updated)
        return updated

    def reset(self) -> None:
        """Back to the launcher, forgetting the current game."""
        self.progress.stop()
        self._route(FlowState.IDLE)
        self.state.current_game = None
        self.state.segments = []
        self.state.error = None
        self.state.error_retryable = False

    async def aclose(self) -> None:
        await self.progress.aclose()
