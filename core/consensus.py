from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from core.errors import InsufficientData
from core.matching import MarketCluster
from core.models import ConfidenceLevel
from utils.config_loader import DEFAULT_RELIABILITY, ConsensusConfig
from utils.logger import BotLogger


@dataclass(slots=True, frozen=True)
class ConsensusSource:
    venue: str
    market_id: str
    price: float
    liquidity: float
    weight: float


@dataclass(slots=True)
class ConsensusResult:
    topic: str
    probability: float
    agreement: float
    source_count: int
    spread: float
    total_liquidity: float
    confidence: ConfidenceLevel
    divergent: bool
    sources: List[ConsensusSource] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "topic": self.topic,
            "probability": round(self.probability, 6),
            "agreement": round(self.agreement, 6),
            "source_count": self.source_count,
            "spread": round(self.spread, 6),
            "total_liquidity": self.total_liquidity,
            "confidence": self.confidence.value,
            "divergent": self.divergent,
            "sources": [
                {"venue": s.venue, "market_id": s.market_id, "price": s.price, "weight": round(s.weight, 6)}
                for s in self.sources
            ],
        }


def agreement_score(prices: List[float]) -> float:
    """1 - population stddev / mean, clamped to [0, 1]."""
    if not prices:
        return 0.0
    mean = sum(prices) / len(prices)
    if mean <= 0:
        return 1.0 if all(p == 0 for p in prices) else 0.0
    variance = sum((p - mean) ** 2 for p in prices) / len(prices)
    return min(1.0, max(0.0, 1.0 - math.sqrt(variance) / mean))


def confidence_level(source_count: int, agreement: float) -> ConfidenceLevel:
    if source_count >= 3 and agreement > 0.7:
        return ConfidenceLevel.HIGH
    if source_count >= 2 and agreement > 0.4:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


class ConsensusAggregator:
    """Liquidity and reliability weighted probability across the venues of a cluster."""

    def __init__(
        self,
        config: ConsensusConfig | None = None,
        reliability: Dict[str, float] | None = None,
        logger: BotLogger | None = None,
    ):
        self.config = config or ConsensusConfig()
        merged = dict(DEFAULT_RELIABILITY)
        merged.update({str(k).lower(): float(v) for k, v in (reliability or {}).items()})
        self.reliability = merged
        self.logger = logger or BotLogger(__name__)

    def reliability_for(self, venue: str) -> float:
        return self.reliability.get(venue.lower(), self.config.default_reliability)

    def compute(self, cluster: MarketCluster) -> ConsensusResult:
        markets = cluster.markets
        if not markets:
            raise InsufficientData("empty cluster")
        prices = [m.yes_price for m in markets]
        weights = [m.liquidity * self.reliability_for(m.venue) for m in markets]
        if sum(weights) <= 0:
            weights = [self.reliability_for(m.venue) for m in markets]
        if sum(weights) <= 0:
            weights = [1.0] * len(markets)
        total_weight = sum(weights)
        probability = sum(p * w for p, w in zip(prices, weights)) / total_weight
        probability = min(max(prices), max(min(prices), probability))

        agreement = agreement_score(prices)
        total_liquidity = sum(m.liquidity for m in markets)
        divergent = (
            agreement < self.config.divergence_agreement
            and total_liquidity >= self.config.divergence_min_liquidity
        )
        return ConsensusResult(
            topic=cluster.representative.title,
            probability=probability,
            agreement=agreement,
            source_count=len(markets),
            spread=max(prices) - min(prices),
            total_liquidity=total_liquidity,
            confidence=confidence_level(len(markets), agreement),
            divergent=divergent,
            sources=[
                ConsensusSource(
                    venue=m.venue,
                    market_id=m.market_id,
                    price=m.yes_price,
                    liquidity=m.liquidity,
                    weight=w / total_weight,
                )
                for m, w in zip(markets, weights)
            ],
        )

    def aggregate(self, clusters: Iterable[MarketCluster]) -> List[ConsensusResult]:
        results: List[ConsensusResult] = []
        for cluster in clusters:
            try:
                results.append(self.compute(cluster))
            except InsufficientData as exc:
                self.logger.debug("consensus skipped", reason=str(exc))
        return results

    def divergent(self, clusters: Iterable[MarketCluster]) -> List[ConsensusResult]:
        return [result for result in self.aggregate(clusters) if result.divergent]

    def best(self, clusters: Iterable[MarketCluster]) -> Optional[ConsensusResult]:
        """Consensus for the cluster with the most venues, ties broken by log volume."""
        ranked = sorted(
            (c for c in clusters if c.members),
            key=lambda c: (-len(c.members), -math.log1p(c.total_volume), c.representative.key),
        )
        if not ranked:
            return None
        return self.compute(ranked[0])


__all__ = [
    "ConsensusSource",
    "ConsensusResult",
    "ConsensusAggregator",
    "agreement_score",
    "confidence_level",
]
