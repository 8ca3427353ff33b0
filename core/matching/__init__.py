from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, List

from core.models import NormalizedMarket

EntityCanonicalSet = FrozenSet[str]


@dataclass(slots=True, frozen=True)
class ClusterMember:
    """A market plus its pairwise similarity against the cluster representative."""

    market: NormalizedMarket
    score: float


@dataclass(slots=True)
class MarketCluster:
    """Markets from distinct venues that refer to the same event."""

    representative: NormalizedMarket
    members: List[ClusterMember] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.members:
            self.members.append(ClusterMember(market=self.representative, score=1.0))

    @property
    def markets(self) -> List[NormalizedMarket]:
        return [member.market for member in self.members]

    @property
    def venues(self) -> List[str]:
        return [member.market.venue for member in self.members]

    @property
    def weakest_score(self) -> float:
        scores = [member.score for member in self.members[1:]]
        return min(scores) if scores else 1.0

    @property
    def total_volume(self) -> float:
        return sum(member.market.volume for member in self.members)

    @property
    def total_liquidity(self) -> float:
        return sum(member.market.liquidity for member in self.members)

    def has_venue(self, venue: str) -> bool:
        return venue in self.venues

    def add(self, market: NormalizedMarket, score: float) -> None:
        self.members.append(ClusterMember(market=market, score=score))


__all__ = ["ClusterMember", "MarketCluster", "EntityCanonicalSet"]
