import asyncio
import json

import httpx
import pytest

from storyloom.client.api import GameApiClient
from storyloom.client.coordinator import GameFlowCoordinator, ProgressSimulator, shortest_route
from storyloom.engine.state_machine import FlowState
from storyloom.errors import (
    NetworkError,
    ProviderTimeoutError,
    RateLimitError,
    StateTransitionError,
    StoryloomError,
)

# ── GameApiClient ────────────────────────────────────────────────────────


def api_with(handler, **kwargs) -> GameApiClient:
    return GameApiClient(
        "http://test", "player-1", transport=httpx.MockTransport(handler), **kwargs
    )


async def test_client_sends_identity_and_preferences():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"status": "success", "data": {"game": {}, "segment": {}}})

    async with api_with(handler, api_key="gsk-user", provider="groq", model="llama") as api:
        await api.create_segment(7, option_id=3)
    request = seen[0]
    assert request.url.path == "/api/games/7/segments"
    assert request.headers["x-user-id"] == "player-1"
    assert request.headers["x-llm-api-key"] == "gsk-user"
    assert json.loads(request.content) == {
        "preferredProvider": "groq",
        "preferredModel": "llama",
        "optionId": 3,
    }


async def test_api_key_can_be_cleared():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"status": "success", "data": []})

    api = api_with(handler, api_key="gsk-user")
    api.set_api_key(None)
    await api.get_segments(1)
    await api.aclose()
    assert "x-llm-api-key" not in seen[0].headers


async def test_typed_errors_are_rebuilt():
    def handler(request):
        return httpx.Response(429, json={
            "status": "fail", "error": "RateLimitError", "message": "wait", "retryable": True,
        })

    async with api_with(handler) as api:
        with pytest.raises(RateLimitError) as info:
            await api.get_game(1)
    assert info.value.retryable


async def test_illegal_transition_is_rebuilt():
    def handler(request):
        return httpx.Response(409, json={
            "status": "fail",
            "error": "StateTransitionError",
            "message": "Invalid state transition: completed -> playing",
            "retryable": False,
        })

    async with api_with(handler) as api:
        with pytest.raises(StateTransitionError) as info:
            await api.create_segment(1, option_text="x")
    assert (info.value.current, info.value.target) == ("completed", "playing")
    assert info.value.status_code == 409
    assert not info.value.retryable


def test_transition_error_keeps_unstructured_message():
    error = StateTransitionError.from_message("not now")
    assert str(error) == "not now"
    assert error.kind == "StateTransitionError"


async def test_untyped_errors_keep_status():
    def handler(request):
        return httpx.Response(418, json={
            "status": "fail", "error": "Teapot", "message": "nope", "retryable": False,
        })

    async with api_with(handler) as api:
        with pytest.raises(StoryloomError) as info:
            await api.create_segment(1, option_text="x")
    assert type(info.value) is StoryloomError
    assert info.value.status_code == 418
    assert not info.value.retryable
    assert str(info.value) == "nope"


@pytest.mark.parametrize(
    "exc, expected",
    [
        (httpx.ConnectError("refused"), NetworkError),
        (httpx.ReadTimeout("slow"), ProviderTimeoutError),
    ],
)
async def test_transport_failures(exc, expected):
    def handler(request):
        raise exc

    async with api_with(handler) as api:
        with pytest.raises(expected):
            await api.list_games()


# ── ProgressSimulator ────────────────────────────────────────────────────


async def test_progress_climbs_to_ceiling_then_completes_and_resets():
    values = []
    progress = ProgressSimulator(duration=0.05, interval=0.01, ceiling=90, grace=0.02,
                                 on_change=values.append)
    progress.start()
    await asyncio.sleep(0.15)
    assert progress.progress == 90
    assert not progress.running

    progress.complete()
    assert progress.progress == 100
    await asyncio.sleep(0.05)
    assert progress.progress == 0
    assert values == sorted(values[: values.index(100) + 1]) + [0]


async def test_progress_stop_cancels_ticking():
    progress = ProgressSimulator(duration=10, interval=0.01)
    progress.start()
    await asyncio.sleep(0.03)
    progress.stop()
    assert progress.progress == 0
    assert not progress.running


# ── GameFlowCoordinator ──────────────────────────────────────────────────


def game(status="ACTIVE", **extra):
    return {"id": 1, "status": status, "initial_story": "Once.", "turn_count": 1, **extra}


def segment(n, options=("A", "B")):
    return {
        "id": n,
        "sequence_number": n,
        "content": f"Chapter {n}",
        "options": [{"id": n * 10 + i, "text": t, "was_chosen": False} for i, t in enumerate(options)],
    }


class FakeApi:
    def __init__(self):
        self.calls = []
        self.gate = None
        self.failures = []
        self.next_status = "ACTIVE"

    async def _call(self, name, result):
        self.calls.append(name)
        if self.gate is not None:
            await self.gate.wait()
        if self.failures:
            raise self.failures.pop(0)
        return result

    async def list_games(self, status=None):
        return await self._call("list_games", {"games": [game()], "pagination": {}})

    async def create_game(self, genre, title=None, total_turns=None):
        return await self._call("create_game", game(initial_story=None, turn_count=0))

    async def start_game(self, game_id):
        return await self._call("start_game", {"game": game(), "firstSegment": segment(1)})

    async def get_game(self, game_id):
        return await self._call("get_game", game())

    async def get_segments(self, game_id):
        return await self._call("get_segments", [segment(1)])

    async def create_segment(self, game_id, option_id=None, option_text=None):
        n = len([c for c in self.calls if c == "create_segment"]) + 2
        return await self._call("create_segment", {
            "game": game(self.next_status, turn_count=n),
            "segment": segment(n, options=() if self.next_status == "COMPLETED" else ("A", "B")),
        })

    async def generate_summary(self, game_id):
        return await self._call("generate_summary", game("COMPLETED", summary="Done."))


@pytest.fixture
async def coordinator():
    api = FakeApi()
    coord = GameFlowCoordinator(api, ProgressSimulator(duration=0.05, interval=0.01, grace=0.01))
    yield coord
    await coord.aclose()


def test_shortest_route():
    assert shortest_route(FlowState.IDLE, FlowState.IDLE) == []
    assert shortest_route(FlowState.IDLE, FlowState.INITIALIZING) == [
        FlowState.BROWSING, FlowState.INITIALIZING,
    ]
    assert shortest_route(FlowState.PLAYING, FlowState.CREATING) == [FlowState.IDLE, FlowState.CREATING]


@pytest.mark.parametrize("current", list(FlowState))
@pytest.mark.parametrize("target", [FlowState.BROWSING, FlowState.CREATING, FlowState.INITIALIZING, FlowState.PLAYING])
def test_routes_never_pass_through_terminal_states(current, target):
    route = shortest_route(current, target)
    assert not {FlowState.COMPLETED, FlowState.ERROR} & set(route[:-1])


async def test_new_game_during_play_never_reports_completion(coordinator):
    await coordinator.create_game("horror")
    seen = []
    coordinator.machine.subscribe(lambda new, old: seen.append(new))
    await coordinator.create_game("mystery")
    assert FlowState.COMPLETED not in seen
    assert seen[:2] == [FlowState.IDLE, FlowState.CREATING]
    assert coordinator.machine.state == FlowState.PLAYING


async def test_concurrent_fetches_share_one_request(coordinator):
    api = coordinator.api
    api.gate = asyncio.Event()
    first = asyncio.create_task(coordinator.fetch_games())
    second = asyncio.create_task(coordinator.fetch_games())
    await asyncio.sleep(0.01)
    api.gate.set()
    a, b = await asyncio.gather(first, second)
    assert api.calls == ["list_games"]
    assert a == b == coordinator.state.games
    assert coordinator.machine.state == FlowState.BROWSING


async def test_create_game_starts_it(coordinator):
    await coordinator.create_game("horror")
    assert coordinator.api.calls == ["create_game", "start_game"]
    assert coordinator.machine.state == FlowState.PLAYING
    assert coordinator.state.current_game["initial_story"] == "Once."
    assert [o["text"] for o in coordinator.state.options] == ["A", "B"]


async def test_duplicate_choice_is_not_sent_twice(coordinator):
    await coordinator.create_game("horror")
    api = coordinator.api
    api.gate = asyncio.Event()
    first = asyncio.create_task(coordinator.submit_choice(option_id=10))
    await asyncio.sleep(0.01)
    assert coordinator.state.processing
    assert await coordinator.submit_choice(option_id=10) is None
    api.gate.set()
    result = await first
    assert result["id"] == 2
    assert api.calls.count("create_segment") == 1
    assert not coordinator.state.processing


async def test_choice_applies_only_after_confirmation(coordinator):
    await coordinator.create_game("horror")
    await coordinator.submit_choice(option_id=11)
    segments = coordinator.state.segments
    assert [s["id"] for s in segments] == [1, 2]
    assert [o["was_chosen"] for o in segments[0]["options"]] == [False, True]
    assert coordinator.progress.progress == 100


async def test_failure_keeps_confirmed_state(coordinator):
    await coordinator.create_game("horror")
    before = [dict(s) for s in coordinator.state.segments]
    coordinator.api.failures.append(RateLimitError("slow down"))

    assert await coordinator.submit_choice(option_id=10) is None
    assert coordinator.machine.state == FlowState.ERROR
    assert coordinator.state.error == "slow down"
    assert coordinator.state.error_retryable
    assert coordinator.state.segments == before
    assert coordinator.progress.progress == 0

    await coordinator.submit_choice(option_id=10)
    assert coordinator.machine.state == FlowState.PLAYING
    assert coordinator.state.error is None
    assert len(coordinator.state.segments) == 2


async def test_completion_and_summary(coordinator):
    await coordinator.create_game("horror")
    coordinator.api.next_status = "COMPLETED"
    await coordinator.submit_choice(option_text="Run")
    assert coordinator.machine.state == FlowState.COMPLETED
    assert coordinator.state.options == []

    updated = await coordinator.request_summary()
    assert updated["summary"] == "Done."
    assert coordinator.machine.state == FlowState.COMPLETED


async def test_load_game_routes_to_play(coordinator):
    await coordinator.load_game(1)
    assert coordinator.api.calls == ["get_game", "get_segments"]
    assert coordinator.machine.state == FlowState.PLAYING
    assert coordinator.state.current_segment["id"] == 1


async def test_submit_outside_play_is_ignored(coordinator):
    assert await coordinator.submit_choice(option_id=1) is None
    assert coordinator.api.calls == []


async def test_reset_returns_to_launcher(coordinator):
    await coordinator.create_game("horror")
    coordinator.reset()
    assert coordinator.machine.state == FlowState.IDLE
    assert coordinator.state.current_game is None
