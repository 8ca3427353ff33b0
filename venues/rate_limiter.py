from __future__ import annotations

import asyncio
import time
from typing import Callable


class RateLimiter:
    """Token bucket for outbound venue requests: ``burst`` tokens refilled at ``requests_per_minute``."""

    def __init__(
        self,
        requests_per_minute: int = 60,
        burst: int = 5,
        clock: Callable[[], float] | None = None,
    ):
        self.requests_per_minute = max(1, requests_per_minute)
        self.interval = 60.0 / self.requests_per_minute
        self.burst = max(1, burst)
        self._clock = clock or time.monotonic
        self._tokens = float(self.burst)
        self._updated_at = self._clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated_at)
        self._tokens = min(float(self.burst), self._tokens + elapsed / self.interval)
        self._updated_at = now

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens

    async def acquire(self) -> None:
        async with self._lock:
            self._refill()
            if self._tokens < 1.0:
                await asyncio.sleep((1.0 - self._tokens) * self.interval)
                self._refill()
            self._tokens = max(0.0, self._tokens - 1.0)

    async def __aenter__(self) -> "RateLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None


__all__ = ["RateLimiter"]
