from __future__ import annotations

import time
from typing import Any, Callable, Dict, Generic, Optional, Tuple, TypeVar

T = TypeVar("T")


class TTLCache(Generic[T]):
    """Small per-owner cache; ``ttl <= 0`` disables it."""

    def __init__(self, ttl: float = 30.0, clock: Callable[[], float] | None = None, max_entries: int = 1024):
        self.ttl = float(ttl)
        self.max_entries = max_entries
        self._clock = clock or time.monotonic
        self._entries: Dict[str, Tuple[float, T]] = {}

    @property
    def enabled(self) -> bool:
        return self.ttl > 0

    def get(self, key: str) -> Optional[T]:
        if not self.enabled:
            return None
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at >= self.ttl:
            self._entries.pop(key, None)
            return None
        return value

    def set(self, key: str, value: T) -> None:
        if not self.enabled:
            return
        if len(self._entries) >= self.max_entries:
            self._evict()
        self._entries[key] = (self._clock(), value)

    def invalidate(self, key: str | None = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def _evict(self) -> None:
        now = self._clock()
        expired = [key for key, (stored_at, _) in self._entries.items() if now - stored_at >= self.ttl]
        for key in expired:
            self._entries.pop(key, None)
        if len(self._entries) >= self.max_entries:
            oldest = min(self._entries.items(), key=lambda item: item[1][0])[0]
            self._entries.pop(oldest, None)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Any) -> bool:
        return self.get(str(key)) is not None


__all__ = ["TTLCache"]
