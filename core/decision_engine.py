from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from core.arbitrage import ArbitrageOpportunity
from core.consensus import ConsensusResult
from core.models import DecisionAction, Sentiment, SocialSignal, WhaleDirection, WhaleSignal
from core.sinks import safe_audit_decision, safe_notify_decision
from utils.config_loader import DecisionConfig
from utils.logger import BotLogger

SENTIMENT_SCORES = {
    Sentiment.BULLISH: 0.8,
    Sentiment.NEUTRAL: 0.5,
    Sentiment.BEARISH: 0.3,
}

WHALE_BASE_SCORES = {
    WhaleDirection.ACCUMULATING: 0.85,
    WhaleDirection.NEUTRAL: 0.5,
    WhaleDirection.DISTRIBUTING: 0.2,
}


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return min(high, max(low, value))


@dataclass(slots=True)
class DecisionInput:
    topic: str
    arbitrage: Optional[ArbitrageOpportunity] = None
    consensus: Optional[ConsensusResult] = None
    sentiment: Optional[Sentiment] = None
    whale: Optional[WhaleSignal] = None
    social: Optional[SocialSignal] = None


@dataclass(slots=True, frozen=True)
class SignalScore:
    name: str
    weight: float
    score: float
    detail: str = ""

    @property
    def contribution(self) -> float:
        return self.weight * self.score * 100.0


@dataclass(slots=True)
class Decision:
    topic: str
    action: DecisionAction
    raw_score: float
    confidence: float
    calibration_multiplier: float
    signals: List[SignalScore] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    reasoning: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def to_memo(self) -> Dict[str, Any]:
        return {
            "type": "decision",
            "topic": self.topic,
            "action": self.action.value,
            "raw_score": round(self.raw_score, 4),
            "confidence": round(self.confidence, 4),
            "calibration_multiplier": round(self.calibration_multiplier, 4),
            "signals": [
                {"name": s.name, "weight": s.weight, "score": round(s.score, 4), "detail": s.detail}
                for s in self.signals
            ],
            "warnings": list(self.warnings),
            "reasoning": list(self.reasoning),
            "created_at": self.created_at.isoformat(),
        }


class DecisionEngine:
    """Folds the available signals into one graded recommendation."""

    def __init__(
        self,
        config: DecisionConfig | None = None,
        logger: BotLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config or DecisionConfig()
        self.logger = logger or BotLogger(__name__)
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    def classify(self, score: float) -> DecisionAction:
        if score >= self.config.execute_threshold:
            return DecisionAction.EXECUTE
        if score >= self.config.watch_threshold:
            return DecisionAction.WATCH
        return DecisionAction.SKIP

    def evaluate(self, inputs: DecisionInput, calibration_multiplier: float = 1.0) -> Decision:
        try:
            return self._evaluate(inputs, calibration_multiplier)
        except Exception as exc:
            self.logger.error("decision evaluation failed", topic=inputs.topic, error=str(exc))
            return Decision(
                topic=inputs.topic,
                action=DecisionAction.SKIP,
                raw_score=0.0,
                confidence=0.0,
                calibration_multiplier=calibration_multiplier,
                warnings=[f"evaluation failed: {exc}"],
                created_at=self._clock(),
            )

    def _evaluate(self, inputs: DecisionInput, calibration_multiplier: float) -> Decision:
        scorers = (
            ("consensus", self.config.consensus_weight, inputs.consensus, self.score_consensus),
            ("arbitrage", self.config.arbitrage_weight, inputs.arbitrage, self.score_arbitrage),
            ("sentiment", self.config.sentiment_weight, inputs.sentiment, self.score_sentiment),
            ("whale", self.config.whale_weight, inputs.whale, self.score_whale),
            ("social", self.config.social_weight, inputs.social, self.score_social),
        )
        signals: List[SignalScore] = []
        warnings: List[str] = []
        for name, weight, value, scorer in scorers:
            if value is None:
                continue
            try:
                result = scorer(value)
            except Exception as exc:
                warnings.append(f"{name} signal dropped: {exc}")
                self.logger.warn("signal scorer failed", signal=name, topic=inputs.topic, error=str(exc))
                continue
            if result is None:
                continue
            score, detail = result
            signals.append(SignalScore(name=name, weight=weight, score=_clamp(score), detail=detail))

        raw = _clamp(sum(s.contribution for s in signals), 0.0, 100.0)
        multiplier = max(0.0, float(calibration_multiplier))
        confidence = _clamp(raw * multiplier, 0.0, 100.0)
        action = self.classify(confidence)
        reasoning = [f"{s.name}: {s.score:.2f} x {s.weight:.2f} ({s.detail})" for s in signals]
        if not signals:
            reasoning.append("no usable signals")
        if multiplier != 1.0:
            reasoning.append(f"calibration multiplier {multiplier:.2f}")
        return Decision(
            topic=inputs.topic,
            action=action,
            raw_score=raw,
            confidence=confidence,
            calibration_multiplier=multiplier,
            signals=signals,
            warnings=warnings,
            reasoning=reasoning,
            created_at=self._clock(),
        )

    def score_consensus(self, consensus: ConsensusResult) -> tuple[float, str]:
        score = consensus.agreement
        if consensus.source_count >= 3:
            score += 0.05
        if consensus.source_count >= 4:
            score += 0.1
        score = min(1.0, score)
        if consensus.spread > 0.15:
            score *= 0.7
        return score, f"{consensus.source_count} sources, agreement {consensus.agreement:.2f}"

    def score_arbitrage(self, opportunity: ArbitrageOpportunity) -> tuple[float, str]:
        score = min(1.0, opportunity.spread_pct / 10.0)
        volume = opportunity.min_volume
        if volume > self.config.arb_volume_bonus_above:
            score += 0.1
        elif volume < self.config.arb_low_volume_below:
            score *= 0.5
        if opportunity.match_confidence < self.config.low_match_confidence:
            score *= 0.7
        return score, f"spread {opportunity.spread_pct:.1f}% {opportunity.cheap.venue}->{opportunity.dear.venue}"

    def score_sentiment(self, sentiment: Sentiment) -> tuple[float, str]:
        key = Sentiment(sentiment)
        return SENTIMENT_SCORES[key], key.value

    def score_whale(self, whale: WhaleSignal) -> Optional[tuple[float, str]]:
        size = float(whale.trade_size_usd)
        if size < self.config.whale_floor_usd:
            return None
        scale = self.config.whale_size_scale_usd
        magnitude = 1.0 if scale <= 0 else min(1.0, (size - self.config.whale_floor_usd) / scale)
        accuracy = whale.wallet_accuracy
        if accuracy is None:
            accuracy = self.config.default_wallet_accuracy
        accuracy = _clamp(float(accuracy))
        base = WHALE_BASE_SCORES[WhaleDirection(whale.direction)]
        score = 0.5 + (base - 0.5) * magnitude * accuracy
        return score, f"{WhaleDirection(whale.direction).value} ${size:,.0f}"

    def score_social(self, social: SocialSignal) -> tuple[float, str]:
        engagement = _clamp(float(social.engagement))
        consistency = _clamp(float(social.consistency))
        return engagement * consistency, f"engagement {engagement:.2f}, consistency {consistency:.2f}"


def format_decision(decision: Decision) -> str:
    """Plain-text rendering for chat notifications."""
    icon = {
        DecisionAction.EXECUTE: "🟢",
        DecisionAction.WATCH: "🟡",
        DecisionAction.SKIP: "⚪",
    }[decision.action]
    lines = [
        f"{icon} {decision.action.value}: {decision.topic}",
        f"Confidence {decision.confidence:.1f} (raw {decision.raw_score:.1f}, x{decision.calibration_multiplier:.2f})",
    ]
    lines.extend(f"- {line}" for line in decision.reasoning)
    if decision.warnings:
        lines.append("Warnings:")
        lines.extend(f"! {warning}" for warning in decision.warnings)
    return "\n".join(lines)


async def route_decision(decision: Decision, audit, notify=None, logger: BotLogger | None = None) -> bool:
    """Audit every decision; EXECUTE and WATCH also go to the notification sink."""
    log = logger or BotLogger(__name__)
    await safe_audit_decision(audit, decision, log)
    if notify is None or decision.action == DecisionAction.SKIP:
        return False
    return await safe_notify_decision(notify, decision, log)


__all__ = [
    "DecisionInput",
    "SignalScore",
    "Decision",
    "DecisionEngine",
    "format_decision",
    "route_decision",
    "SENTIMENT_SCORES",
    "WHALE_BASE_SCORES",
]
