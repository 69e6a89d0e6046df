from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from storyloom.errors import GameBusyError

log = logging.getLogger(__name__)


class GameLocks:
    """Per-game generation guard for one process.

    Acquisition never waits: a second generation for a game that is already
    generating fails with :class:`GameBusyError`.  The repository's version
    check covers the multi-process case.
    """

    def __init__(self) -> None:
        self._held: set[int] = set()

    def is_held(self, game_id: int) -> bool:
        return game_id in self._held

    @asynccontextmanager
    async def hold(self, game_id: int) -> AsyncIterator[None]:
        if game_id in self._held:
            log.warning("Rejected concurrent generation for game %d", game_id)
            raise GameBusyError(f"Game {game_id} is already generating")
        self._held.add(game_id)
        try:
            yield
        finally:
            self._held.discard(game_id)
