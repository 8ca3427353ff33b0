from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

from core.matching import MarketCluster
from core.matching.clustering import cluster_markets, multi_venue
from core.matching.matcher import SimilarityMatcher
from core.models import NormalizedMarket
from utils.config_loader import ArbitrageConfig
from utils.logger import BotLogger


class ArbitrageStrategy(str, Enum):
    HEDGE_BOTH_SIDES = "HEDGE_BOTH_SIDES"
    RELATIVE_VALUE = "RELATIVE_VALUE"


@dataclass(slots=True, frozen=True)
class ArbitrageLeg:
    venue: str
    market_id: str
    title: str
    raw_yes_price: float
    raw_no_price: float
    adjusted_yes_price: float
    fee: float
    volume: float
    url: Optional[str] = None

    @property
    def effective_no_price(self) -> float:
        return self.raw_no_price if self.raw_no_price > 0 else 1.0 - self.raw_yes_price


@dataclass(slots=True, frozen=True)
class StrategyQuote:
    strategy: ArbitrageStrategy
    description: str
    cost: float
    expected_profit: float
    profit_pct: float


@dataclass(slots=True)
class ArbitrageOpportunity:
    topic: str
    cheap: ArbitrageLeg
    dear: ArbitrageLeg
    spread: float
    match_confidence: float
    strategies: List[StrategyQuote] = field(default_factory=list)

    @property
    def spread_pct(self) -> float:
        return self.spread * 100.0

    @property
    def min_volume(self) -> float:
        return min(self.cheap.volume, self.dear.volume)

    @property
    def rank_score(self) -> float:
        return self.spread * self.min_volume

    def strategy(self, kind: ArbitrageStrategy) -> Optional[StrategyQuote]:
        for quote in self.strategies:
            if quote.strategy == kind:
                return quote
        return None

    def to_dict(self) -> Dict[str, object]:
        return {
            "topic": self.topic,
            "buy_yes": {"venue": self.cheap.venue, "market_id": self.cheap.market_id, "price": self.cheap.raw_yes_price},
            "buy_no": {"venue": self.dear.venue, "market_id": self.dear.market_id, "price": self.dear.effective_no_price},
            "spread": round(self.spread, 6),
            "match_confidence": round(self.match_confidence, 6),
            "strategies": [
                {
                    "strategy": quote.strategy.value,
                    "cost": round(quote.cost, 6),
                    "expected_profit": round(quote.expected_profit, 6),
                    "profit_pct": round(quote.profit_pct, 4),
                }
                for quote in self.strategies
            ],
        }


@dataclass(slots=True)
class ScanResult:
    clusters: List[MarketCluster]
    opportunities: List[ArbitrageOpportunity]


class ArbitrageDetector:
    """Finds fee-adjusted YES price disagreement inside clusters of matched markets."""

    def __init__(
        self,
        matcher: SimilarityMatcher | None = None,
        config: ArbitrageConfig | None = None,
        fees: Dict[str, float] | None = None,
        logger: BotLogger | None = None,
    ):
        self.matcher = matcher or SimilarityMatcher()
        self.config = config or ArbitrageConfig()
        self.fees = {str(k).lower(): float(v) for k, v in (fees or {}).items()}
        self.logger = logger or BotLogger(__name__)

    def fee_for(self, venue: str) -> float:
        return self.fees.get(venue.lower(), 0.0)

    def detect(self, markets: Iterable[NormalizedMarket]) -> ScanResult:
        clusters = cluster_markets(markets, self.matcher, logger=self.logger)
        opportunities = self.opportunities_from_clusters(clusters)
        self.logger.debug(
            "arbitrage scan complete",
            clusters=len(clusters),
            multi_venue=len(multi_venue(clusters)),
            opportunities=len(opportunities),
        )
        return ScanResult(clusters=clusters, opportunities=opportunities)

    def opportunities_from_clusters(self, clusters: Iterable[MarketCluster]) -> List[ArbitrageOpportunity]:
        found: List[ArbitrageOpportunity] = []
        for cluster in multi_venue(clusters):
            opportunity = self.evaluate_cluster(cluster)
            if opportunity:
                found.append(opportunity)
        found.sort(key=lambda opp: (-opp.rank_score, opp.cheap.venue, opp.cheap.market_id, opp.dear.venue))
        return found[: self.config.max_opportunities]

    def evaluate_cluster(self, cluster: MarketCluster) -> Optional[ArbitrageOpportunity]:
        legs = [self._leg(market) for market in cluster.markets]
        liquid = [leg for leg in legs if leg.volume >= self.config.min_volume]
        if len(liquid) < len(legs):
            self.logger.debug(
                "thin legs skipped",
                topic=cluster.representative.title,
                skipped=[f"{leg.venue}:{leg.market_id}" for leg in legs if leg.volume < self.config.min_volume],
            )
        if len(liquid) < 2:
            return None
        cheap = min(liquid, key=lambda leg: (leg.adjusted_yes_price, leg.venue, leg.market_id))
        dear = max(liquid, key=lambda leg: (leg.adjusted_yes_price, leg.venue, leg.market_id))
        if cheap is dear:
            return None
        spread = abs(dear.adjusted_yes_price - cheap.adjusted_yes_price)
        if spread <= self.config.min_spread:
            return None
        return ArbitrageOpportunity(
            topic=cluster.representative.title,
            cheap=cheap,
            dear=dear,
            spread=spread,
            match_confidence=cluster.weakest_score,
            strategies=[self._hedge_quote(cheap, dear), self._relative_value_quote(cheap, dear, spread)],
        )

    def _leg(self, market: NormalizedMarket) -> ArbitrageLeg:
        fee = self.fee_for(market.venue)
        return ArbitrageLeg(
            venue=market.venue,
            market_id=market.market_id,
            title=market.title,
            raw_yes_price=market.yes_price,
            raw_no_price=market.no_price,
            adjusted_yes_price=max(0.0, market.yes_price - fee),
            fee=fee,
            volume=market.volume,
            url=market.url,
        )

    @staticmethod
    def _hedge_quote(cheap: ArbitrageLeg, dear: ArbitrageLeg) -> StrategyQuote:
        cost = cheap.raw_yes_price * (1.0 + cheap.fee) + dear.effective_no_price * (1.0 + dear.fee)
        locked = 1.0 - cost
        return StrategyQuote(
            strategy=ArbitrageStrategy.HEDGE_BOTH_SIDES,
            description=f"buy YES on {cheap.venue}, buy NO on {dear.venue}",
            cost=cost,
            expected_profit=locked,
            profit_pct=(locked / cost * 100.0) if cost > 0 else 0.0,
        )

    @staticmethod
    def _relative_value_quote(cheap: ArbitrageLeg, dear: ArbitrageLeg, spread: float) -> StrategyQuote:
        base = cheap.adjusted_yes_price
        return StrategyQuote(
            strategy=ArbitrageStrategy.RELATIVE_VALUE,
            description=f"long {cheap.venue}, short {dear.venue} on convergence",
            cost=base,
            expected_profit=spread,
            profit_pct=(spread / base * 100.0) if base > 0 else 0.0,
        )


__all__ = [
    "ArbitrageStrategy",
    "ArbitrageLeg",
    "StrategyQuote",
    "ArbitrageOpportunity",
    "ScanResult",
    "ArbitrageDetector",
]
