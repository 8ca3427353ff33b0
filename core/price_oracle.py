from __future__ import annotations

import asyncio
import statistics
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Protocol

from core.errors import SourceUnavailable
from core.models import ConfidenceLevel
from utils.logger import BotLogger
from utils.ttl_cache import TTLCache


@dataclass(slots=True, frozen=True)
class OraclePrice:
    source: str
    asset: str
    price: float


class PriceOracle(Protocol):
    name: str

    async def get_price(self, asset: str) -> OraclePrice: ...


@dataclass(slots=True)
class ResolvedPrice:
    asset: str
    price: float
    confidence: ConfidenceLevel
    agreeing: int
    sources: Dict[str, Optional[float]] = field(default_factory=dict)
    resolved_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))


class OracleAggregator:
    """Median price across independent oracles; confidence counts sources near the median."""

    def __init__(
        self,
        oracles: Iterable[PriceOracle],
        timeout: float = 3.0,
        agreement_tolerance: float = 0.02,
        cache: TTLCache[ResolvedPrice] | None = None,
        logger: BotLogger | None = None,
    ):
        self.oracles = list(oracles)
        self.timeout = timeout
        self.agreement_tolerance = agreement_tolerance
        self.cache = cache if cache is not None else TTLCache(ttl=0)
        self.logger = logger or BotLogger(__name__)

    async def _query(self, oracle: PriceOracle, asset: str) -> float:
        quote = await asyncio.wait_for(oracle.get_price(asset), timeout=self.timeout)
        price = float(quote.price)
        if price <= 0:
            raise ValueError(f"non-positive price {price}")
        return price

    async def resolve(self, asset: str) -> ResolvedPrice:
        symbol = asset.upper()
        cached = self.cache.get(symbol)
        if cached is not None:
            return cached
        results = await asyncio.gather(
            *(self._query(oracle, symbol) for oracle in self.oracles),
            return_exceptions=True,
        )
        sources: Dict[str, Optional[float]] = {}
        prices: List[float] = []
        for oracle, result in zip(self.oracles, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                sources[oracle.name] = None
                self.logger.debug("oracle failed", oracle=oracle.name, asset=symbol, error=str(result) or type(result).__name__)
                continue
            sources[oracle.name] = result
            prices.append(result)
        if not prices:
            raise SourceUnavailable(f"no oracle answered for {symbol}", asset=symbol)

        median = statistics.median(prices)
        agreeing = sum(1 for price in prices if abs(price - median) <= self.agreement_tolerance * median)
        if agreeing >= 3:
            confidence = ConfidenceLevel.HIGH
        elif agreeing == 2:
            confidence = ConfidenceLevel.MEDIUM
        else:
            confidence = ConfidenceLevel.LOW
        resolved = ResolvedPrice(
            asset=symbol,
            price=median,
            confidence=confidence,
            agreeing=agreeing,
            sources=sources,
        )
        self.cache.set(symbol, resolved)
        return resolved

    async def resolve_many(self, assets: Iterable[str]) -> Dict[str, ResolvedPrice]:
        resolved: Dict[str, ResolvedPrice] = {}
        for asset in assets:
            try:
                resolved[asset.upper()] = await self.resolve(asset)
            except SourceUnavailable as exc:
                self.logger.warn("price unresolved", asset=asset, error=str(exc))
        return resolved


__all__ = ["OraclePrice", "PriceOracle", "ResolvedPrice", "OracleAggregator"]
