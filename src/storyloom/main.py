"""Storyloom: turn-based interactive fiction generated by LLM providers.

Run with:  uvicorn storyloom.main:app --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from storyloom.config import settings

# Configure logging for all storyloom modules
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

from fastapi import FastAPI

from storyloom import __version__
from storyloom.api.context import router as context_router
from storyloom.api.games import router as games_router
from storyloom.api.models import router as models_router
from storyloom.api.responses import install_error_handlers
from storyloom.api.story import router as story_router
from storyloom.db.database import init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    await init_db()
    yield


app = FastAPI(
    title="Storyloom",
    description=(
        "Turn-based interactive fiction: bounded story context, four LLM "
        "providers behind one gateway and resilient parsing of their output."
    ),
    version=__version__,
    lifespan=lifespan,
)

install_error_handlers(app)

# ── API routers ──────────────────────────────────────────────────────────
app.include_router(games_router)
app.include_router(story_router)
app.include_router(context_router)
app.include_router(models_router)
