import pytest

from core.arbitrage import ArbitrageDetector, ArbitrageStrategy
from core.decision_engine import DecisionEngine
from core.matching import MarketCluster
from utils.config_loader import ArbitrageConfig

BTC_X = "Will Bitcoin hit $100k by Dec 2024?"
BTC_Y = "BTC 100K EOY?"


def _cluster(*markets, score=0.9):
    cluster = MarketCluster(representative=markets[0])
    for market in markets[1:]:
        cluster.add(market, score)
    return cluster


def test_btc_pair_yields_hedge(make_market):
    detector = ArbitrageDetector(fees={})
    markets = [
        make_market("polymarket", "x", BTC_X, 0.62, volume=50_000),
        make_market("kalshi", "y", BTC_Y, 0.68, volume=30_000),
    ]
    result = detector.detect(markets)
    assert len(result.opportunities) == 1
    opp = result.opportunities[0]
    assert opp.spread == pytest.approx(0.06)
    assert opp.spread_pct == pytest.approx(6.0)
    assert opp.cheap.venue == "polymarket"
    assert opp.dear.venue == "kalshi"
    assert opp.min_volume == 30_000
    hedge = opp.strategy(ArbitrageStrategy.HEDGE_BOTH_SIDES)
    assert hedge.description == "buy YES on polymarket, buy NO on kalshi"
    assert hedge.cost == pytest.approx(0.94)
    assert hedge.expected_profit == pytest.approx(0.06)
    relative = opp.strategy(ArbitrageStrategy.RELATIVE_VALUE)
    assert relative.expected_profit == pytest.approx(0.06)
    payload = opp.to_dict()
    assert payload["buy_yes"]["venue"] == "polymarket"
    assert payload["buy_no"]["price"] == pytest.approx(0.32)


def test_fees_reduce_the_spread(make_market):
    detector = ArbitrageDetector(fees={"polymarket": 0.005, "Kalshi": 0.01})
    cluster = _cluster(
        make_market("polymarket", "x", BTC_X, 0.62),
        make_market("kalshi", "y", BTC_Y, 0.68),
    )
    opp = detector.evaluate_cluster(cluster)
    assert opp.cheap.adjusted_yes_price == pytest.approx(0.615)
    assert opp.dear.adjusted_yes_price == pytest.approx(0.67)
    assert opp.spread == pytest.approx(0.055)
    hedge = opp.strategy(ArbitrageStrategy.HEDGE_BOTH_SIDES)
    assert hedge.cost == pytest.approx(0.62 * 1.005 + 0.32 * 1.01)


def test_adjusted_price_never_negative(make_market):
    detector = ArbitrageDetector(fees={"polymarket": 0.05})
    leg = detector._leg(make_market("polymarket", "x", BTC_X, 0.02))
    assert leg.adjusted_yes_price == 0.0


def test_small_spread_is_ignored(make_market):
    detector = ArbitrageDetector()
    cluster = _cluster(
        make_market("polymarket", "x", BTC_X, 0.50),
        make_market("kalshi", "y", BTC_Y, 0.52),
    )
    assert detector.evaluate_cluster(cluster) is None


def test_thin_leg_is_ignored(make_market):
    detector = ArbitrageDetector()
    cluster = _cluster(
        make_market("polymarket", "x", BTC_X, 0.40, volume=500),
        make_market("kalshi", "y", BTC_Y, 0.60),
    )
    assert detector.evaluate_cluster(cluster) is None


def test_thin_outlier_does_not_hide_liquid_pair(make_market):
    detector = ArbitrageDetector()
    cluster = _cluster(
        make_market("kalshi", "k", BTC_Y, 0.40, volume=500),
        make_market("manifold", "m", BTC_Y, 0.50, volume=50_000),
        make_market("polymarket", "p", BTC_X, 0.60, volume=50_000),
    )
    opp = detector.evaluate_cluster(cluster)
    assert opp is not None
    assert opp.cheap.venue == "manifold"
    assert opp.dear.venue == "polymarket"
    assert opp.spread == pytest.approx(0.10)


def test_single_market_cluster_has_no_opportunity(make_market):
    detector = ArbitrageDetector()
    assert detector.evaluate_cluster(_cluster(make_market("polymarket", "x", BTC_X, 0.4))) is None


def test_negative_hedge_profit_is_reported(make_market):
    detector = ArbitrageDetector()
    cluster = _cluster(
        make_market("polymarket", "x", BTC_X, 0.60, no=0.45),
        make_market("kalshi", "y", BTC_Y, 0.70, no=0.45),
    )
    hedge = detector.evaluate_cluster(cluster).strategy(ArbitrageStrategy.HEDGE_BOTH_SIDES)
    assert hedge.cost == pytest.approx(1.05)
    assert hedge.expected_profit < 0


def test_missing_no_price_falls_back_to_complement(make_market):
    detector = ArbitrageDetector()
    cluster = _cluster(
        make_market("polymarket", "x", BTC_X, 0.40),
        make_market("kalshi", "y", BTC_Y, 0.70, no=0.0),
    )
    opp = detector.evaluate_cluster(cluster)
    assert opp.dear.effective_no_price == pytest.approx(0.30)


def test_ranking_and_cap(make_market):
    detector = ArbitrageDetector(config=ArbitrageConfig(max_opportunities=2))
    wide_thin = _cluster(
        make_market("polymarket", "a1", "A", 0.40, volume=5_000),
        make_market("kalshi", "a2", "A", 0.50, volume=5_000),
    )
    narrow_deep = _cluster(
        make_market("polymarket", "b1", "B", 0.40, volume=50_000),
        make_market("kalshi", "b2", "B", 0.45, volume=50_000),
    )
    middling = _cluster(
        make_market("polymarket", "c1", "C", 0.40, volume=10_000),
        make_market("kalshi", "c2", "C", 0.44, volume=10_000),
    )
    found = detector.opportunities_from_clusters([wide_thin, narrow_deep, middling])
    assert [opp.cheap.market_id for opp in found] == ["b1", "a1"]
    assert found[0].rank_score == pytest.approx(0.05 * 50_000)


def test_borderline_match_confidence_carries_into_scoring(make_market):
    detector = ArbitrageDetector()
    engine = DecisionEngine()
    markets = (
        make_market("polymarket", "x", BTC_X, 0.62, volume=50_000),
        make_market("kalshi", "y", BTC_Y, 0.68, volume=30_000),
    )
    borderline = detector.evaluate_cluster(_cluster(*markets, score=0.36))
    confident = detector.evaluate_cluster(_cluster(*markets, score=0.9))
    assert borderline.match_confidence == pytest.approx(0.36)
    assert confident.match_confidence == pytest.approx(0.9)
    assert engine.score_arbitrage(confident)[0] == pytest.approx(0.7)
    assert engine.score_arbitrage(borderline)[0] == pytest.approx(0.7 * 0.7)
