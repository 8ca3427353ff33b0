from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import aiohttp

from core.errors import SourceUnavailable
from core.models import NormalizedMarket
from utils.logger import BotLogger
from venues.rate_limiter import RateLimiter

RETRYABLE_STATUSES = (429, 500, 502, 503, 504)


def to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def clamp_price(value: Any) -> float:
    return min(1.0, max(0.0, to_float(value)))


class BaseVenueClient(ABC):
    """Shared GET/retry helpers for public read-only venue APIs."""

    name: str = ""

    def __init__(
        self,
        base_url: str,
        session: aiohttp.ClientSession,
        rate_limit: RateLimiter | None = None,
        logger: BotLogger | None = None,
        page_size: int = 25,
        max_retries: int = 2,
        request_timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session
        self.rate_limit = rate_limit or RateLimiter()
        self.logger = logger or BotLogger(self.__class__.__name__)
        self.page_size = page_size
        self.max_retries = max_retries
        self.request_timeout = request_timeout

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        attempt = 0
        while True:
            attempt += 1
            await self.rate_limit.acquire()
            try:
                async with self.session.get(
                    url,
                    params=params,
                    timeout=aiohttp.ClientTimeout(total=self.request_timeout),
                ) as response:
                    if response.status in RETRYABLE_STATUSES and attempt <= self.max_retries:
                        backoff = min(2 ** attempt, 10) * 0.25 + random.random() * 0.1
                        self.logger.warn(
                            "retryable venue response",
                            venue=self.name,
                            path=path,
                            status=response.status,
                            attempt=attempt,
                            backoff=round(backoff, 3),
                        )
                        await asyncio.sleep(backoff)
                        continue
                    if response.status != 200:
                        text = await response.text()
                        raise SourceUnavailable(
                            f"{self.name} request failed ({response.status}): {text[:200]}",
                            venue=self.name,
                            status=response.status,
                        )
                    try:
                        return await response.json(content_type=None)
                    except ValueError as exc:
                        raise SourceUnavailable(f"{self.name} returned non-json", original=exc, venue=self.name) from exc
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                raise SourceUnavailable(f"{self.name} unreachable: {exc}", original=exc, venue=self.name) from exc

    async def fetch_markets(self, query: str) -> List[NormalizedMarket]:
        payload = await self._get_json(self._markets_path(query), self._markets_params(query))
        markets: List[NormalizedMarket] = []
        for row in self._rows(payload):
            try:
                market = self._parse_market(row)
            except (KeyError, TypeError, ValueError) as exc:
                self.logger.debug("skipping malformed market", venue=self.name, error=str(exc))
                continue
            if market is not None:
                markets.append(market)
        return markets

    @staticmethod
    def _rows(payload: Any) -> List[Dict[str, Any]]:
        if isinstance(payload, dict):
            for key in ("markets", "data"):
                if key in payload:
                    return list(payload.get(key) or [])
            return []
        if isinstance(payload, list):
            return payload
        return []

    @abstractmethod
    def _markets_path(self, query: str) -> str:
        """Endpoint path for a market search (empty query means trending)."""

    @abstractmethod
    def _markets_params(self, query: str) -> Dict[str, Any]:
        """Query-string parameters for the market search."""

    @abstractmethod
    def _parse_market(self, row: Dict[str, Any]) -> Optional[NormalizedMarket]:
        """Translate one wire row; None drops the row."""


__all__ = ["BaseVenueClient", "RETRYABLE_STATUSES", "clamp_price", "to_float"]
