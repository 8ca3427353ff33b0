from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from core.errors import SourceUnavailable
from core.models import NormalizedMarket
from utils.logger import BotLogger
from utils.ttl_cache import TTLCache
from venues import VenueAdapter

DEFAULT_TIMEOUT_SEC = 4.0


@dataclass(slots=True)
class FetchResult:
    markets: List[NormalizedMarket] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def venues(self) -> List[str]:
        return sorted({market.venue for market in self.markets})


class MarketFetcher:
    """Concurrent fan-out over venue adapters; a slow or failing venue is just absent."""

    def __init__(
        self,
        adapters: Iterable[VenueAdapter],
        cache: TTLCache[List[NormalizedMarket]] | None = None,
        timeouts: Dict[str, float] | None = None,
        default_timeout: float = DEFAULT_TIMEOUT_SEC,
        logger: BotLogger | None = None,
    ):
        self.adapters: Dict[str, VenueAdapter] = {adapter.name: adapter for adapter in adapters}
        self.cache = cache if cache is not None else TTLCache(ttl=0)
        self.timeouts = dict(timeouts or {})
        self.default_timeout = default_timeout
        self.logger = logger or BotLogger(__name__)

    def timeout_for(self, venue: str) -> float:
        return self.timeouts.get(venue, self.default_timeout)

    async def fetch(self, query: str = "", venues: Optional[Sequence[str]] = None) -> FetchResult:
        names = [name for name in (venues or sorted(self.adapters)) if name in self.adapters]
        results = await asyncio.gather(
            *(self._fetch_one(name, query) for name in names),
            return_exceptions=True,
        )
        outcome = FetchResult()
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                reason = str(result) or result.__class__.__name__
                outcome.failed[name] = reason
                self.logger.warn("venue unavailable", venue=name, query=query, error=reason)
                continue
            outcome.markets.extend(result)
        outcome.markets.sort(key=lambda m: (m.venue, m.market_id))
        return outcome

    async def fetch_many(self, queries: Iterable[str], venues: Optional[Sequence[str]] = None) -> FetchResult:
        """Fetch several topics; markets are de-duplicated by (venue, market_id)."""
        merged: Dict[str, NormalizedMarket] = {}
        failed: Dict[str, str] = {}
        for query in queries:
            result = await self.fetch(query, venues)
            for market in result.markets:
                merged.setdefault(market.key, market)
            failed.update(result.failed)
        markets = sorted(merged.values(), key=lambda m: (m.venue, m.market_id))
        return FetchResult(markets=markets, failed=failed)

    async def _fetch_one(self, name: str, query: str) -> List[NormalizedMarket]:
        cache_key = f"{name}:{query}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return list(cached)
        adapter = self.adapters[name]
        timeout = self.timeout_for(name)
        try:
            markets = await asyncio.wait_for(adapter.fetch_markets(query), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise SourceUnavailable(f"{name} timed out after {timeout}s", original=exc, venue=name) from exc
        except SourceUnavailable:
            raise
        except Exception as exc:
            raise SourceUnavailable(f"{name} failed: {exc}", original=exc, venue=name) from exc
        markets = list(markets or [])
        self.cache.set(cache_key, markets)
        return markets


__all__ = ["MarketFetcher", "FetchResult"]
