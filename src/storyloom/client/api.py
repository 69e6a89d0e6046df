"""Async HTTP wrapper around the storyloom API."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from storyloom.errors import ERROR_KINDS, NetworkError, ProviderTimeoutError, StoryloomError

log = logging.getLogger(__name__)

# generation calls wait on the provider; leave headroom over its own timeout
DEFAULT_TIMEOUT = httpx.Timeout(60.0, connect=5.0)


def error_from_response(response: httpx.Response) -> StoryloomError:
    """Rebuild the server's typed error from its JSON payload."""
    try:
        payload = response.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    message = payload.get("message") or payload.get("detail") or response.reason_phrase
    if not isinstance(message, str):
        message = str(message)
    cls = ERROR_KINDS.get(payload.get("error", ""))
    if cls is not None:
        return cls.from_message(message)
    error = StoryloomError(message)
    error.status_code = response.status_code
    error.retryable = bool(payload.get("retryable", response.status_code >= 500))
    return error


class GameApiClient:
    """Thin client for the game endpoints.

    The LLM key travels in ``x-llm-api-key``; provider and model preferences
    go in request bodies.  Non-2xx responses raise the matching
    :class:`~storyloom.errors.StoryloomError` subclass.
    """

    def __init__(
        self,
        base_url: str,
        user_id: str,
        api_key: Optional[str] = None,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: httpx.Timeout = DEFAULT_TIMEOUT,
    ):
        self.provider = provider
        self.model = model
        headers = {"x-user-id": user_id}
        if api_key:
            headers["x-llm-api-key"] = api_key
        self._http = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> GameApiClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def set_api_key(self, api_key: Optional[str]) -> None:
        if api_key:
            self._http.headers["x-llm-api-key"] = api_key
        else:
            self._http.headers.pop("x-llm-api-key", None)

    def _preferences(self) -> dict[str, str]:
        body = {}
        if self.provider:
            body["preferredProvider"] = self.provider
        if self.model:
            body["preferredModel"] = self.model
        return body

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            log.warning("%s %s timed out", method, path)
            raise ProviderTimeoutError(f"{method} {path} timed out") from exc
        except httpx.HTTPError as exc:
            log.warning("%s %s failed: %s", method, path, exc)
            raise NetworkError(f"{method} {path} failed: {exc}") from exc
        if response.is_error:
            error = error_from_response(response)
            log.info("%s %s -> %d %s", method, path, response.status_code, error.kind)
            raise error
        return response.json().get("data")

    # ── games ───────────────────────────────────────────────────────────

    async def list_games(
        self,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> dict:
        params: dict[str, Any] = {"page": page, "limit": limit}
        if status:
            params["status"] = status
        return await self._request("GET", "/api/games", params=params)

    async def create_game(
        self,
        genre: str,
        title: Optional[str] = None,
        total_turns: Optional[int] = None,
    ) -> dict:
        body: dict[str, Any] = {"genre": genre}
        if title:
            body["title"] = title
        if total_turns is not None:
            body["totalTurns"] = total_turns
        return await self._request("POST", "/api/games", json=body)

    async def get_game(self, game_id: int) -> dict:
        return await self._request("GET", f"/api/games/{game_id}")

    async def delete_game(self, game_id: int) -> None:
        await self._request("DELETE", f"/api/games/{game_id}")

    async def get_segments(self, game_id: int) -> list[dict]:
        return await self._request("GET", f"/api/games/{game_id}/segments")

    # ── generation ──────────────────────────────────────────────────────

    async def start_game(self, game_id: int) -> dict:
        """Returns ``{"game", "firstSegment"}``."""
        return await self._request(
            "POST", f"/api/games/{game_id}/start", json=self._preferences()
        )

    async def create_segment(
        self,
        game_id: int,
        option_id: Optional[int] = None,
        option_text: Optional[str] = None,
    ) -> dict:
        """Returns ``{"game", "segment"}``."""
        body: dict[str, Any] = self._preferences()
        if option_id is not None:
            body["optionId"] = option_id
        if option_text:
            body["optionText"] = option_text
        return await self._request("POST", f"/api/games/{game_id}/segments", json=body)

    async def generate_summary(self, game_id: int) -> dict:
        return await self._request(
            "POST", f"/api/games/{game_id}/summary", json=self._preferences()
        )

    async def choose_option(self, segment_id: int, option_id: int) -> dict:
        return await self._request(
            "POST", f"/api/segments/{segment_id}/options/{option_id}/choose"
        )

    # ── settings ────────────────────────────────────────────────────────

    async def get_context_config(self) -> dict:
        return await self._request("GET", "/api/context-config")

    async def update_context_config(
        self,
        max_segments: Optional[int] = None,
        max_tokens: Optional[int] = None,
    ) -> dict:
        body = {}
        if max_segments is not None:
            body["maxSegments"] = max_segments
        if max_tokens is not None:
            body["maxTokens"] = max_tokens
        return await self._request("PUT", "/api/context-config", json=body)

    async def list_models(self, provider: Optional[str] = None, refresh: bool = False) -> dict:
        params: dict[str, Any] = {"refresh": refresh}
        if provider or self.provider:
            params["provider"] = provider or self.provider
        return await self._request("GET", "/api/models", params=params)

    async def list_providers(self) -> dict:
        return await self._request("GET", "/api/providers")
