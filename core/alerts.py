from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from core.arbitrage import ArbitrageOpportunity
from core.errors import PersistenceFailure
from core.matching.matcher import SimilarityMatcher
from core.models import NormalizedMarket, WhaleActivity
from utils.config_loader import DEFAULT_ALERT_COOLDOWNS, PriceAlertConfig
from utils.json_store import read_json, write_json_atomic
from utils.logger import BotLogger

SIGNIFICANT_CHANGE = 5.0

_KEY_RE = re.compile(r"[^a-z0-9]")


def alert_key(kind: str, identifier: str) -> str:
    return f"{kind}:{_KEY_RE.sub('', (identifier or '').lower())[:60]}"


@dataclass(slots=True)
class TriggeredAlert:
    kind: str
    identifier: str
    message: str
    value: Optional[float] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return alert_key(self.kind, self.identifier)


@dataclass(slots=True)
class PriceAlertRule:
    rule_id: str
    threshold: float
    direction: str = "above"
    market_id: Optional[str] = None
    venue: Optional[str] = None
    topic: Optional[str] = None

    def __post_init__(self) -> None:
        if self.direction not in ("above", "below"):
            raise ValueError(f"unsupported alert direction: {self.direction}")
        if not self.market_id and not self.topic:
            raise ValueError("price alert needs a market_id or a topic")

    @classmethod
    def from_config(cls, cfg: PriceAlertConfig) -> "PriceAlertRule":
        return cls(
            rule_id=cfg.rule_id,
            threshold=cfg.threshold,
            direction=cfg.direction,
            market_id=cfg.market_id,
            venue=cfg.venue,
            topic=cfg.topic,
        )

    def applies_to(self, market: NormalizedMarket, matcher: SimilarityMatcher) -> bool:
        if self.venue and market.venue != self.venue:
            return False
        if self.market_id:
            return market.market_id == self.market_id
        return bool(matcher.related(self.topic or "", [market]))

    def crossed(self, price: float) -> bool:
        if self.direction == "above":
            return price >= self.threshold
        return price <= self.threshold


class AlertChecker:
    """Evaluates price alert rules against the latest market snapshot."""

    def __init__(
        self,
        rules: Iterable[PriceAlertRule] = (),
        matcher: SimilarityMatcher | None = None,
        logger: BotLogger | None = None,
    ):
        self.rules = list(rules)
        self.matcher = matcher or SimilarityMatcher()
        self.logger = logger or BotLogger(__name__)

    def add_rule(self, rule: PriceAlertRule) -> None:
        self.rules = [existing for existing in self.rules if existing.rule_id != rule.rule_id] + [rule]

    def remove_rule(self, rule_id: str) -> bool:
        before = len(self.rules)
        self.rules = [rule for rule in self.rules if rule.rule_id != rule_id]
        return len(self.rules) != before

    def check(self, markets: Iterable[NormalizedMarket]) -> List[TriggeredAlert]:
        snapshot = list(markets)
        triggered: List[TriggeredAlert] = []
        for rule in self.rules:
            for market in snapshot:
                if not rule.applies_to(market, self.matcher) or not rule.crossed(market.yes_price):
                    continue
                triggered.append(
                    TriggeredAlert(
                        kind="price",
                        identifier=f"{rule.rule_id}:{market.key}",
                        message=(
                            f"{market.title} on {market.venue} is {market.yes_price:.0%}, "
                            f"{rule.direction} {rule.threshold:.0%}"
                        ),
                        value=market.yes_price * 100.0,
                        payload={"rule_id": rule.rule_id, "market": market.key, "price": market.yes_price},
                    )
                )
        if triggered:
            self.logger.info("price alerts triggered", count=len(triggered))
        return triggered


def arbitrage_alert(opportunity: ArbitrageOpportunity) -> TriggeredAlert:
    return TriggeredAlert(
        kind="arbitrage",
        identifier=opportunity.topic,
        message=(
            f"Arbitrage {opportunity.spread_pct:.1f}%: buy YES on {opportunity.cheap.venue} "
            f"@ {opportunity.cheap.raw_yes_price:.2f}, NO on {opportunity.dear.venue} "
            f"@ {opportunity.dear.effective_no_price:.2f} ({opportunity.topic})"
        ),
        value=opportunity.spread_pct,
        payload=opportunity.to_dict(),
    )


def whale_alert(activity: WhaleActivity) -> TriggeredAlert:
    return TriggeredAlert(
        kind="whale",
        identifier=f"{activity.wallet}:{activity.topic}",
        message=(
            f"Whale {activity.direction.value} ${activity.trade_size_usd:,.0f} on {activity.topic}"
            + (f" ({activity.venue})" if activity.venue else "")
        ),
        value=activity.trade_size_usd / 1000.0,
        payload={"wallet": activity.wallet, "topic": activity.topic, "direction": activity.direction.value},
    )


class AlertDeduper:
    """Suppresses repeated alerts per key within a per-kind cooldown unless the value moved a lot."""

    def __init__(
        self,
        cooldowns: Dict[str, float] | None = None,
        significant_change: float = SIGNIFICANT_CHANGE,
        path: Path | str | None = None,
        clock: Callable[[], float] | None = None,
        logger: BotLogger | None = None,
    ):
        self.cooldowns = dict(DEFAULT_ALERT_COOLDOWNS)
        self.cooldowns.update(cooldowns or {})
        self.significant_change = significant_change
        self.path = Path(path) if path else None
        self._clock = clock or time.time
        self.logger = logger or BotLogger(__name__)
        self._sent: Dict[str, Dict[str, Any]] = {}
        if self.path:
            loaded = read_json(self.path, default={})
            if isinstance(loaded, dict):
                self._sent = {k: v for k, v in loaded.items() if isinstance(v, dict) and "sent_at" in v}

    def cooldown_for(self, kind: str) -> float:
        return float(self.cooldowns.get(kind, self.cooldowns.get("default", 3600.0)))

    def should_send(self, alert: TriggeredAlert) -> bool:
        entry = self._sent.get(alert.key)
        if entry is None:
            return True
        elapsed = self._clock() - float(entry["sent_at"])
        if elapsed >= self.cooldown_for(alert.kind):
            return True
        previous = entry.get("value")
        if alert.value is not None and previous is not None:
            if abs(alert.value - float(previous)) >= self.significant_change:
                return True
        self.logger.debug("duplicate alert suppressed", key=alert.key, elapsed=round(elapsed, 1))
        return False

    def record(self, alert: TriggeredAlert) -> None:
        self._sent[alert.key] = {"kind": alert.kind, "sent_at": self._clock(), "value": alert.value}
        self._prune()
        if self.path:
            try:
                write_json_atomic(self.path, self._sent)
            except PersistenceFailure as exc:
                self.logger.warn("alert dedup state not saved", path=str(self.path), error=str(exc))

    def filter(self, alerts: Iterable[TriggeredAlert]) -> List[TriggeredAlert]:
        fresh: List[TriggeredAlert] = []
        seen: set[str] = set()
        for alert in alerts:
            if alert.key in seen or not self.should_send(alert):
                continue
            seen.add(alert.key)
            fresh.append(alert)
        return fresh

    def _prune(self) -> None:
        now = self._clock()
        horizon = max(self.cooldowns.values()) if self.cooldowns else 0.0
        stale = [key for key, entry in self._sent.items() if now - float(entry["sent_at"]) > horizon]
        for key in stale:
            self._sent.pop(key, None)


__all__ = [
    "TriggeredAlert",
    "PriceAlertRule",
    "AlertChecker",
    "AlertDeduper",
    "alert_key",
    "arbitrage_alert",
    "whale_alert",
]
