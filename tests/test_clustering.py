import random

import pytest

from core.errors import LogicInvariant, check_invariant
from core.matching import MarketCluster
from core.matching.clustering import cluster_markets, multi_venue
from core.matching.matcher import SimilarityMatcher
from utils.config_loader import MatchingConfig

TITLES = [
    "Will Bitcoin hit $100k by Dec 2024?",
    "BTC 100K EOY?",
    "Will Trump win the 2024 election?",
    "Donald Trump wins presidency",
    "Will the Fed cut rates in March?",
    "Federal Reserve rate cut March?",
    "Super Bowl winner 2025",
    "Ethereum above $5k?",
]


def _cluster_keys(clusters):
    return sorted(sorted(m.key for m in cluster.markets) for cluster in clusters)


def test_btc_titles_cluster_across_venues(make_market):
    markets = [
        make_market("polymarket", "p1", TITLES[0], 0.62),
        make_market("kalshi", "k1", TITLES[1], 0.68),
        make_market("manifold", "m1", TITLES[2], 0.5),
    ]
    clusters = cluster_markets(markets, SimilarityMatcher())
    grouped = multi_venue(clusters)
    assert len(grouped) == 1
    assert sorted(grouped[0].venues) == ["kalshi", "polymarket"]
    assert grouped[0].weakest_score >= 0.5


def test_same_venue_duplicates_stay_apart(make_market):
    markets = [
        make_market("polymarket", "p1", TITLES[0], 0.62),
        make_market("polymarket", "p2", TITLES[0], 0.63),
    ]
    clusters = cluster_markets(markets, SimilarityMatcher())
    assert len(clusters) == 2
    assert multi_venue(clusters) == []


def test_clustering_ignores_input_order(make_market):
    markets = [
        make_market(venue, f"{venue}-{idx}", title, 0.5)
        for idx, title in enumerate(TITLES)
        for venue in ("polymarket", "kalshi")
    ]
    matcher = SimilarityMatcher()
    baseline = _cluster_keys(cluster_markets(markets, matcher))
    shuffled = list(markets)
    random.Random(7).shuffle(shuffled)
    assert _cluster_keys(cluster_markets(shuffled, matcher)) == baseline


@pytest.mark.parametrize("seed", range(5))
def test_clusters_never_repeat_a_venue(make_market, seed):
    rng = random.Random(seed)
    venues = ["polymarket", "kalshi", "manifold"]
    markets = [
        make_market(rng.choice(venues), f"m{idx}", rng.choice(TITLES), round(rng.uniform(0.05, 0.95), 2))
        for idx in range(60)
    ]
    matcher = SimilarityMatcher(config=MatchingConfig(strict_invariants=True))
    clusters = cluster_markets(markets, matcher)
    assert sum(len(cluster.members) for cluster in clusters) == 60
    for cluster in clusters:
        assert len(cluster.venues) == len(set(cluster.venues))


def test_cluster_representative_is_first_member(make_market):
    market = make_market("polymarket", "p1", TITLES[0], 0.62)
    cluster = MarketCluster(representative=market)
    assert cluster.markets == [market]
    assert cluster.weakest_score == 1.0
    assert cluster.total_volume == market.volume


def test_check_invariant_strict_raises():
    with pytest.raises(LogicInvariant):
        check_invariant(False, "broken", strict=True, cluster="x")
    assert check_invariant(False, "broken", strict=False) is False
    assert check_invariant(True, "fine") is True
