"""Error taxonomy shared by the server, the gateway and the client coordinator.

Every failure inside the generation pipeline resolves to one of these
exceptions.  Each carries the HTTP status the API layer answers with, whether
the *user* may retry, and a message that is safe to show to a player.
"""

from __future__ import annotations

from typing import Optional


class StoryloomError(Exception):
    """Base class for every typed error raised by storyloom."""

    status_code: int = 500
    retryable: bool = False
    user_message: str = "Something went wrong."

    def __init__(self, message: str = "", *, provider: Optional[str] = None):
        super().__init__(message or self.user_message)
        self.provider = provider

    @classmethod
    def from_message(cls, message: str) -> StoryloomError:
        """Rebuild an error from the message of a response payload."""
        return cls(message)

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_payload(self) -> dict:
        """Response body for the HTTP layer (never leaks internals)."""
        return {
            "status": "fail" if self.status_code < 500 else "error",
            "error": self.kind,
            "message": self.public_message(),
            "retryable": self.retryable,
        }

    def public_message(self) -> str:
        return str(self)


# ── Configuration / input ───────────────────────────────────────────────


class ConfigurationError(StoryloomError):
    """Missing or invalid provider configuration; the user must fix input."""

    status_code = 400
    user_message = "The AI provider configuration is incomplete. Check provider, model and API key."


class GameNotFoundError(StoryloomError):
    status_code = 404
    user_message = "Game not found."


class InvalidChoiceError(StoryloomError):
    status_code = 400
    user_message = "That choice is not available for the current chapter."


class GameBusyError(StoryloomError):
    """Another generation for the same game is in flight (fail fast, no queueing)."""

    status_code = 409
    retryable = True
    user_message = "This story is already being written. Please wait a moment."


class StateTransitionError(StoryloomError):
    """An illegal lifecycle transition was attempted."""

    status_code = 409
    user_message = "The game is not in a state that allows this action."

    def __init__(self, current: str, target: str):
        super().__init__(f"Invalid state transition: {current} -> {target}")
        self.current = current
        self.target = target

    @classmethod
    def from_message(cls, message: str) -> StateTransitionError:
        states = message.rsplit(":", 1)[-1].split("->")
        if len(states) == 2:
            return cls(states[0].strip(), states[1].strip())
        error = cls("", "")
        error.args = (message,)
        return error


# ── Provider errors (the five kinds callers ever see) ───────────────────


class ProviderError(StoryloomError):
    """Base for failures classified from a provider SDK."""

    status_code = 502
    retryable = True


class AuthError(ProviderError):
    status_code = 401
    retryable = False
    user_message = "The AI provider rejected the API key. Please check your API key."

    def public_message(self) -> str:
        # surfaced verbatim so the player can fix the key
        return str(self)


class RateLimitError(ProviderError):
    status_code = 429
    user_message = "The AI provider is rate limiting requests. Please wait and try again."


class ProviderServerError(ProviderError):
    status_code = 502
    user_message = "The AI provider had a problem. Please try again."

    def public_message(self) -> str:
        return self.user_message


class ProviderTimeoutError(ProviderError, TimeoutError):
    status_code = 504
    user_message = "The AI provider took too long to answer. Please try again."

    def public_message(self) -> str:
        return self.user_message


class UnknownProviderError(ProviderError):
    """Fallback when a provider failure cannot be classified."""

    user_message = "The AI provider request failed. Please try again."

    def public_message(self) -> str:
        return self.user_message


class NetworkError(StoryloomError):
    """The client could not reach the storyloom server at all."""

    status_code = 503
    retryable = True
    user_message = "Could not reach the story server. Check your connection and try again."

    def public_message(self) -> str:
        return self.user_message


# ── Output errors ───────────────────────────────────────────────────────


class GenerationFormatError(StoryloomError):
    """The parser exhausted every salvage stage."""

    status_code = 502
    retryable = True
    user_message = "Story generation failed. Please try again."

    def __init__(self, message: str = "", *, raw: str = "", provider: Optional[str] = None):
        super().__init__(message, provider=provider)
        self.raw = raw

    def public_message(self) -> str:
        return self.user_message


ERROR_KINDS: dict[str, type[StoryloomError]] = {
    cls.__name__: cls
    for cls in (
        ConfigurationError,
        GameNotFoundError,
        InvalidChoiceError,
        GameBusyError,
        StateTransitionError,
        AuthError,
        RateLimitError,
        ProviderServerError,
        ProviderTimeoutError,
        UnknownProviderError,
        GenerationFormatError,
        NetworkError,
    )
}
