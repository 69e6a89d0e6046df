from __future__ import annotations

import json
from collections import deque
from typing import Optional

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from storyloom.db.database import init_db, make_sessionmaker
from storyloom.db.repository import GameRepository
from storyloom.engine.locks import GameLocks
from storyloom.llm.base import LLMProvider
from storyloom.llm.gateway import GenerationGateway
from storyloom.llm.model_cache import ModelCache
from storyloom.models.game import StorySegment, Option
from storyloom.models.generation import GenerationOptions, ModelInfo, PromptData
from storyloom.services.story import StoryService


def segment_json(title: str = "Chapter", content: str = "Something happens.",
                 options=("Go left", "Go right"), status: str = "ACTIVE") -> str:
    return json.dumps({
        "segmentTitle": title,
        "content": content,
        "options": list(options),
        "status": status,
    })


class FakeProvider(LLMProvider):
    """Scripted provider: returns queued replies (or raises queued exceptions)."""

    DEFAULT_MODEL = "fake-model"
    SUPPORTS_SEED = True

    def __init__(self, name: str = "groq", replies=(), models=()):
        super().__init__(timeout=5.0)
        self.name = name
        self.replies = deque(replies)
        self.models = list(models)
        self.calls: list[tuple[GenerationOptions, PromptData]] = []
        self.model_calls = 0

    def queue(self, *replies) -> None:
        self.replies.extend(replies)

    async def complete(self, options, prompt, *, request_id):
        self.calls.append((options, prompt))
        reply = self.replies.popleft() if self.replies else segment_json()
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def fetch_models(self, api_key):
        self.model_calls += 1
        return [
            ModelInfo(id=m, name=m, provider=self.name, context_window=8192)
            for m in self.models
        ]


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider(models=["llama-3.1-8b-instant"])


@pytest.fixture
def gateway(fake_provider) -> GenerationGateway:
    return GenerationGateway(providers={"groq": fake_provider}, model_cache=ModelCache(ttl=60))


@pytest.fixture
def options() -> GenerationOptions:
    return GenerationOptions(provider="groq", model_id="llama-3.1-8b-instant", api_key="gsk-test")


@pytest.fixture
async def sessions():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield make_sessionmaker(engine)
    await engine.dispose()


@pytest.fixture
def repo(sessions) -> GameRepository:
    return GameRepository(sessions)


@pytest.fixture
def locks() -> GameLocks:
    return GameLocks()


@pytest.fixture
def story(gateway, repo, locks) -> StoryService:
    return StoryService(gateway, repo, locks=locks)


def make_segment(n: int, content: Optional[str] = None, chosen: Optional[str] = None,
                 title: str = "") -> StorySegment:
    options = []
    if chosen is not None:
        options = [Option(id=n * 10, segment_id=n, text=chosen, was_chosen=True)]
    return StorySegment(
        id=n,
        game_id=1,
        sequence_number=n,
        title=title,
        content=content if content is not None else f"Chapter {n} text.",
        options=options,
    )
