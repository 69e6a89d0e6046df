from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from storyloom.models.generation import ModelInfo


@dataclass
class _Entry:
    models: list[ModelInfo]
    fetched_at: float


@dataclass
class ModelCache:
    """Time-boxed model lists keyed by provider.

    Owned by the gateway and created once per process.  ``clock`` is
    injectable so expiry can be tested without sleeping.
    """

    ttl: float = 3600.0
    clock: Callable[[], float] = time.monotonic
    _entries: dict[str, _Entry] = field(default_factory=dict)

    def get(self, provider: str) -> Optional[list[ModelInfo]]:
        entry = self._entries.get(provider)
        if entry is None:
            return None
        if self.clock() - entry.fetched_at >= self.ttl:
            del self._entries[provider]
            return None
        return list(entry.models)

    def put(self, provider: str, models: list[ModelInfo]) -> None:
        self._entries[provider] = _Entry(models=list(models), fetched_at=self.clock())

    def invalidate(self, key: Optional[str] = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)
