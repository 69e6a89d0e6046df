from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from storyloom.errors import StateTransitionError, StoryloomError
from storyloom.models.game import Game

log = logging.getLogger(__name__)


def success(data: Any) -> dict:
    return {"status": "success", "data": data}


def game_payload(game: Game) -> dict:
    """Game as sent to clients, including the derived narrative stage."""
    payload = game.model_dump(mode="json")
    payload["narrative_stage"] = game.narrative_stage.value
    return payload


async def storyloom_error_handler(request: Request, exc: StoryloomError) -> JSONResponse:
    if exc.status_code >= 500 or isinstance(exc, StateTransitionError):
        log.error("%s %s failed: %s: %s", request.method, request.url.path, exc.kind, exc)
    else:
        log.warning("%s %s rejected: %s: %s", request.method, request.url.path, exc.kind, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StoryloomError, storyloom_error_handler)
