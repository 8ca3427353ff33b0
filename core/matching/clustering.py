from __future__ import annotations

from typing import Iterable, List

from core.errors import check_invariant
from core.models import NormalizedMarket
from utils.logger import BotLogger

from . import MarketCluster
from .matcher import SimilarityMatcher


def cluster_markets(
    markets: Iterable[NormalizedMarket],
    matcher: SimilarityMatcher,
    threshold: float | None = None,
    logger: BotLogger | None = None,
) -> List[MarketCluster]:
    """
    Greedy first-fit clustering over markets sorted by (venue, market_id).

    A market joins the first cluster whose representative it matches directly
    and which holds no market from the same venue; otherwise it opens a new one.
    """
    limit = matcher.config.match_threshold if threshold is None else threshold
    ordered = sorted(markets, key=lambda m: (m.venue, m.market_id))
    clusters: List[MarketCluster] = []
    for market in ordered:
        placed = False
        for cluster in clusters:
            if cluster.has_venue(market.venue):
                continue
            score = matcher.score(cluster.representative, market)
            if score >= limit:
                cluster.add(market, score)
                placed = True
                break
        if not placed:
            clusters.append(MarketCluster(representative=market))

    for cluster in clusters:
        venues = cluster.venues
        check_invariant(
            len(venues) == len(set(venues)),
            "cluster holds two markets from one venue",
            strict=matcher.config.strict_invariants,
            logger=logger or BotLogger(__name__),
            representative=cluster.representative.key,
            venues=venues,
        )
    return clusters


def multi_venue(clusters: Iterable[MarketCluster]) -> List[MarketCluster]:
    return [cluster for cluster in clusters if len(cluster.members) >= 2]


__all__ = ["cluster_markets", "multi_venue"]
