import pytest

from core.arbitrage import ArbitrageLeg, ArbitrageOpportunity
from core.consensus import ConsensusResult
from core.decision_engine import DecisionEngine, DecisionInput, format_decision, route_decision
from core.models import (
    ConfidenceLevel,
    DecisionAction,
    Sentiment,
    SocialSignal,
    WhaleDirection,
    WhaleSignal,
)


class DummyAudit:
    def __init__(self, fail: bool = False):
        self.memos = []
        self.fail = fail

    async def log_decision(self, memo):
        if self.fail:
            raise RuntimeError("disk full")
        self.memos.append(memo)

    async def log_heartbeat(self, summary):
        pass


class DummyNotify:
    def __init__(self):
        self.decisions = []

    async def notify_decision(self, decision):
        self.decisions.append(decision)
        return True

    async def notify_alert(self, alert):
        return True


def _leg(venue, price, volume):
    return ArbitrageLeg(
        venue=venue,
        market_id=f"{venue}-1",
        title="BTC",
        raw_yes_price=price,
        raw_no_price=round(1 - price, 6),
        adjusted_yes_price=price,
        fee=0.0,
        volume=volume,
    )


def _opportunity(spread=0.06, volume=30_000, match_confidence=0.9):
    return ArbitrageOpportunity(
        topic="BTC",
        cheap=_leg("polymarket", 0.62, 50_000),
        dear=_leg("kalshi", 0.62 + spread, volume),
        spread=spread,
        match_confidence=match_confidence,
    )


def _consensus(agreement=0.9, sources=3, spread=0.1):
    return ConsensusResult(
        topic="BTC",
        probability=0.65,
        agreement=agreement,
        source_count=sources,
        spread=spread,
        total_liquidity=30_000,
        confidence=ConfidenceLevel.HIGH,
        divergent=False,
    )


def _full_inputs():
    return DecisionInput(
        topic="BTC",
        arbitrage=_opportunity(),
        consensus=_consensus(),
        sentiment=Sentiment.BULLISH,
        whale=WhaleSignal(WhaleDirection.ACCUMULATING, 100_000, wallet_accuracy=1.0),
        social=SocialSignal(engagement=0.8, consistency=0.9),
    )


@pytest.mark.parametrize(
    "score,action",
    [
        (72, DecisionAction.EXECUTE),
        (70, DecisionAction.EXECUTE),
        (50, DecisionAction.WATCH),
        (45, DecisionAction.WATCH),
        (44.99, DecisionAction.SKIP),
        (30, DecisionAction.SKIP),
    ],
)
def test_classify_thresholds(score, action):
    assert DecisionEngine().classify(score) == action


def test_all_signals_combine(clock):
    decision = DecisionEngine(clock=clock).evaluate(_full_inputs())
    assert decision.raw_score == pytest.approx(82.7)
    assert decision.action == DecisionAction.EXECUTE
    assert [s.name for s in decision.signals] == ["consensus", "arbitrage", "sentiment", "whale", "social"]
    assert decision.created_at == clock()
    assert decision.warnings == []


def test_calibration_multiplier_scales_confidence():
    decision = DecisionEngine().evaluate(_full_inputs(), calibration_multiplier=0.8)
    assert decision.raw_score == pytest.approx(82.7)
    assert decision.confidence == pytest.approx(66.16)
    assert decision.action == DecisionAction.WATCH
    assert any("calibration multiplier" in line for line in decision.reasoning)


def test_missing_signals_are_not_renormalized():
    decision = DecisionEngine().evaluate(DecisionInput(topic="t", sentiment=Sentiment.BULLISH))
    assert decision.raw_score == pytest.approx(12.0)
    assert decision.action == DecisionAction.SKIP


def test_no_signals_skips():
    decision = DecisionEngine().evaluate(DecisionInput(topic="t"))
    assert decision.raw_score == 0.0
    assert decision.action == DecisionAction.SKIP
    assert decision.reasoning == ["no usable signals"]


def test_failing_scorer_drops_signal_only():
    inputs = DecisionInput(topic="t", sentiment="confused", consensus=_consensus())
    decision = DecisionEngine().evaluate(inputs)
    assert [s.name for s in decision.signals] == ["consensus"]
    assert decision.warnings and decision.warnings[0].startswith("sentiment signal dropped")


def test_consensus_scoring():
    engine = DecisionEngine()
    assert engine.score_consensus(_consensus(agreement=0.9, sources=2, spread=0.05))[0] == pytest.approx(0.9)
    assert engine.score_consensus(_consensus(agreement=0.9, sources=4, spread=0.05))[0] == pytest.approx(1.0)
    assert engine.score_consensus(_consensus(agreement=0.9, sources=2, spread=0.2))[0] == pytest.approx(0.63)


def test_arbitrage_scoring():
    engine = DecisionEngine()
    assert engine.score_arbitrage(_opportunity(spread=0.2, volume=5_000))[0] == pytest.approx(1.0)
    assert engine.score_arbitrage(_opportunity(spread=0.05, volume=500))[0] == pytest.approx(0.25)
    assert engine.score_arbitrage(_opportunity(spread=0.05, volume=5_000, match_confidence=0.4))[0] == pytest.approx(0.35)


def test_whale_scoring():
    engine = DecisionEngine()
    assert engine.score_whale(WhaleSignal(WhaleDirection.ACCUMULATING, 5_000)) is None
    score, _ = engine.score_whale(WhaleSignal(WhaleDirection.ACCUMULATING, 55_000))
    assert score == pytest.approx(0.5 + 0.35 * 0.5 * 0.5)
    score, _ = engine.score_whale(WhaleSignal(WhaleDirection.DISTRIBUTING, 500_000, wallet_accuracy=1.0))
    assert score == pytest.approx(0.2)


def test_small_whale_is_absent_from_decision():
    inputs = DecisionInput(topic="t", whale=WhaleSignal(WhaleDirection.ACCUMULATING, 9_999))
    assert DecisionEngine().evaluate(inputs).signals == []


def test_social_scoring_clamps():
    score, _ = DecisionEngine().score_social(SocialSignal(engagement=1.5, consistency=0.5))
    assert score == pytest.approx(0.5)


def test_format_decision_lists_reasoning():
    decision = DecisionEngine().evaluate(_full_inputs())
    text = format_decision(decision)
    assert text.splitlines()[0].endswith("EXECUTE: BTC")
    assert "- arbitrage:" in text


def test_memo_is_serializable():
    memo = DecisionEngine().evaluate(_full_inputs()).to_memo()
    assert memo["type"] == "decision"
    assert memo["action"] == "EXECUTE"
    assert len(memo["signals"]) == 5


@pytest.mark.asyncio
async def test_route_decision_skips_notification_for_skip():
    audit, notify = DummyAudit(), DummyNotify()
    decision = DecisionEngine().evaluate(DecisionInput(topic="t"))
    assert await route_decision(decision, audit, notify) is False
    assert len(audit.memos) == 1
    assert notify.decisions == []


@pytest.mark.asyncio
async def test_route_decision_notifies_and_survives_audit_failure():
    audit, notify = DummyAudit(fail=True), DummyNotify()
    decision = DecisionEngine().evaluate(_full_inputs())
    assert await route_decision(decision, audit, notify) is True
    assert notify.decisions == [decision]
