from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from core.alerts import AlertChecker, AlertDeduper, TriggeredAlert, arbitrage_alert, whale_alert
from core.arbitrage import ArbitrageDetector, ArbitrageOpportunity
from core.calibration import CalibrationLedger, format_report
from core.consensus import ConsensusAggregator, ConsensusResult
from core.decision_engine import Decision, DecisionEngine, DecisionInput, route_decision
from core.errors import PersistenceFailure
from core.market_fetcher import MarketFetcher
from core.matching import MarketCluster
from core.matching.clustering import multi_venue
from core.models import ExternalSignals, NormalizedMarket, Sentiment, SocialSignal, WhaleActivity, WhaleSignal
from core.sinks import AuditSink, NotificationSink, safe_audit_heartbeat, safe_notify_alert
from utils.config_loader import HeartbeatConfig
from utils.json_store import read_json, write_json_atomic
from utils.logger import BotLogger

TIMESTAMP_FIELDS = ("last_price_snapshot", "last_arb_scan", "last_whale_scan", "last_calibration_check")


class SentimentProvider(Protocol):
    async def sentiment(self, topic: str) -> Optional[Sentiment]: ...


class WhaleActivityProvider(Protocol):
    async def whale_signal(self, topic: str) -> Optional[WhaleSignal]: ...


class SocialProvider(Protocol):
    async def social(self, topic: str) -> Optional[SocialSignal]: ...


class WhaleScanner(Protocol):
    async def scan(self) -> List[WhaleActivity]: ...


class SnapshotSink(Protocol):
    async def record(self, markets: List[NormalizedMarket]) -> int: ...


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _parse_ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


@dataclass(slots=True)
class SchedulerState:
    last_price_snapshot: Optional[datetime] = None
    last_arb_scan: Optional[datetime] = None
    last_whale_scan: Optional[datetime] = None
    last_calibration_check: Optional[datetime] = None
    total_cycles: int = 0
    total_scans: int = 0
    total_arbs_found: int = 0
    total_decisions: int = 0
    total_whale_alerts: int = 0
    total_alerts_sent: int = 0
    total_snapshots: int = 0

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            payload[item.name] = value.isoformat() if isinstance(value, datetime) else value
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "SchedulerState":
        state = cls()
        for item in fields(cls):
            if item.name not in payload:
                continue
            raw = payload[item.name]
            if item.name in TIMESTAMP_FIELDS:
                setattr(state, item.name, _parse_ts(raw))
            else:
                try:
                    setattr(state, item.name, int(raw or 0))
                except (TypeError, ValueError):
                    setattr(state, item.name, 0)
        return state


class SchedulerStateStore:
    """JSON file holding the heartbeat timestamps and lifetime counters."""

    def __init__(self, path: Path | str | None = None, logger: BotLogger | None = None):
        self.path = Path(path) if path else Path("data") / "heartbeat_state.json"
        self.logger = logger or BotLogger(__name__)

    def load(self) -> SchedulerState:
        data = read_json(self.path, default={})
        if not isinstance(data, dict):
            return SchedulerState()
        return SchedulerState.from_dict(data)

    def save(self, state: SchedulerState) -> None:
        write_json_atomic(self.path, state.to_dict())


@dataclass(slots=True)
class CycleSummary:
    started_at: datetime
    ran: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    decisions: List[Decision] = field(default_factory=list)
    opportunities: int = 0
    markets: int = 0
    failed_venues: Dict[str, str] = field(default_factory=dict)
    alerts_sent: int = 0
    calibration_multiplier: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "ran": list(self.ran),
            "skipped": list(self.skipped),
            "errors": dict(self.errors),
            "decisions": [
                {"topic": d.topic, "action": d.action.value, "confidence": round(d.confidence, 2)} for d in self.decisions
            ],
            "opportunities": self.opportunities,
            "markets": self.markets,
            "failed_venues": dict(self.failed_venues),
            "alerts_sent": self.alerts_sent,
            "calibration_multiplier": round(self.calibration_multiplier, 4),
        }


class Heartbeat:
    """Periodic driver: snapshot, arbitrage scan, whale scan, calibration check, audit."""

    def __init__(
        self,
        config: HeartbeatConfig,
        fetcher: MarketFetcher,
        detector: ArbitrageDetector,
        consensus: ConsensusAggregator,
        engine: DecisionEngine,
        state_store: SchedulerStateStore,
        ledger: CalibrationLedger | None = None,
        sentiment: SentimentProvider | None = None,
        whales: WhaleActivityProvider | None = None,
        social: SocialProvider | None = None,
        whale_scanner: WhaleScanner | None = None,
        snapshots: SnapshotSink | None = None,
        alert_checker: AlertChecker | None = None,
        deduper: AlertDeduper | None = None,
        audit: AuditSink | None = None,
        notify: NotificationSink | None = None,
        clock: Callable[[], datetime] | None = None,
        logger: BotLogger | None = None,
    ):
        self.config = config
        self.fetcher = fetcher
        self.detector = detector
        self.consensus = consensus
        self.engine = engine
        self.state_store = state_store
        self.ledger = ledger
        self.sentiment = sentiment
        self.whales = whales
        self.social = social
        self.whale_scanner = whale_scanner
        self.snapshots = snapshots
        self.alert_checker = alert_checker
        self.deduper = deduper or AlertDeduper()
        self.audit = audit
        self.notify = notify
        self._clock = clock or _utcnow
        self.logger = logger or BotLogger(__name__)
        self.state = state_store.load()
        self.calibration_multiplier = self._read_multiplier()

    def _read_multiplier(self) -> float:
        if not self.ledger:
            return 1.0
        try:
            return self.ledger.calibration_multiplier()
        except Exception as exc:
            self.logger.warn("calibration multiplier unavailable", error=str(exc))
            return 1.0

    def _due(self, last: Optional[datetime], interval_sec: float, now: datetime) -> bool:
        if last is None:
            return True
        return (now - last).total_seconds() >= interval_sec

    def _persist(self, summary: CycleSummary) -> None:
        try:
            self.state_store.save(self.state)
        except PersistenceFailure as exc:
            summary.errors["state"] = str(exc)
            self.logger.error("scheduler state not saved", path=str(self.state_store.path), error=str(exc.original or exc))

    async def _run_task(
        self,
        name: str,
        summary: CycleSummary,
        task: Callable[[CycleSummary], Awaitable[bool]],
    ) -> None:
        try:
            if await task(summary):
                summary.ran.append(name)
            else:
                summary.skipped.append(name)
        except Exception as exc:
            summary.errors[name] = str(exc) or exc.__class__.__name__
            self.logger.error("heartbeat task failed", task=name, error=summary.errors[name])
        self._persist(summary)

    async def run_cycle(self) -> CycleSummary:
        now = self._clock()
        summary = CycleSummary(started_at=now, calibration_multiplier=self.calibration_multiplier)
        self.state.total_cycles += 1

        schedule = (
            ("snapshot", self.state.last_price_snapshot, self.config.snapshot_interval_sec, self._snapshot),
            ("arbitrage", self.state.last_arb_scan, self.config.arb_scan_interval_sec, self._arbitrage_scan),
            ("whales", self.state.last_whale_scan, self.config.whale_scan_interval_sec, self._whale_scan),
            ("calibration", self.state.last_calibration_check, self.config.calibration_interval_sec, self._calibration_check),
        )
        for name, last, interval, task in schedule:
            if self._due(last, interval, now):
                await self._run_task(name, summary, task)
            else:
                summary.skipped.append(name)

        summary.calibration_multiplier = self.calibration_multiplier
        await safe_audit_heartbeat(self.audit, {**summary.to_dict(), **self.state.to_dict()}, self.logger)
        self.logger.info(
            "heartbeat cycle",
            ran=summary.ran,
            skipped=summary.skipped,
            errors=len(summary.errors),
            decisions=len(summary.decisions),
        )
        return summary

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        tick = max(1.0, float(self.config.tick_interval_sec))
        next_tick = loop.time()
        while not stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception as exc:
                self.logger.exception("heartbeat cycle crashed", error=str(exc))
            next_tick += tick
            now = loop.time()
            if next_tick <= now:
                next_tick = now + tick - ((now - next_tick) % tick)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=next_tick - now)
            except asyncio.TimeoutError:
                continue

    async def _fetch_markets(self, summary: CycleSummary) -> List[NormalizedMarket]:
        result = await self.fetcher.fetch_many(self.config.topics)
        summary.failed_venues.update(result.failed)
        summary.markets = max(summary.markets, len(result.markets))
        return result.markets

    async def _snapshot(self, summary: CycleSummary) -> bool:
        markets = await self._fetch_markets(summary)
        if self.snapshots:
            await self.snapshots.record(markets)
        if self.alert_checker:
            triggered = self.alert_checker.check(markets)
            summary.alerts_sent += await self._send_alerts(triggered)
        self.state.total_snapshots += 1
        self.state.last_price_snapshot = summary.started_at
        return True

    async def _arbitrage_scan(self, summary: CycleSummary) -> bool:
        markets = await self._fetch_markets(summary)
        scan = self.detector.detect(markets)
        consensus_by_key = self._consensus_by_cluster(scan.clusters)
        summary.opportunities = len(scan.opportunities)

        decisions: List[Decision] = []
        covered: set[str] = set()
        for opportunity in scan.opportunities[: self.config.decisions_per_scan]:
            cluster_key = self._cluster_key_for(scan.clusters, opportunity)
            covered.add(cluster_key)
            decision = await self._decide(opportunity.topic, opportunity, consensus_by_key.get(cluster_key))
            decisions.append(decision)
            await self._route(decision, arbitrage_alert(opportunity))

        for key, result in sorted(consensus_by_key.items()):
            if key in covered or not result.divergent:
                continue
            decision = await self._decide(result.topic, None, result)
            decisions.append(decision)
            await self._route(
                decision,
                TriggeredAlert(kind="divergence", identifier=result.topic, message=result.topic, value=result.agreement * 100.0),
            )

        summary.decisions.extend(decisions)
        self.state.total_scans += 1
        self.state.total_arbs_found += len(scan.opportunities)
        self.state.total_decisions += len(decisions)
        self.state.last_arb_scan = summary.started_at
        return True

    def _consensus_by_cluster(self, clusters: List[MarketCluster]) -> Dict[str, ConsensusResult]:
        results: Dict[str, ConsensusResult] = {}
        for cluster in multi_venue(clusters):
            try:
                results[cluster.representative.key] = self.consensus.compute(cluster)
            except Exception as exc:
                self.logger.warn("consensus failed", cluster=cluster.representative.key, error=str(exc))
        return results

    @staticmethod
    def _cluster_key_for(clusters: List[MarketCluster], opportunity: ArbitrageOpportunity) -> str:
        for cluster in clusters:
            keys = {(m.venue, m.market_id) for m in cluster.markets}
            if (opportunity.cheap.venue, opportunity.cheap.market_id) in keys:
                return cluster.representative.key
        return f"{opportunity.cheap.venue}:{opportunity.cheap.market_id}"

    async def _decide(
        self,
        topic: str,
        opportunity: Optional[ArbitrageOpportunity],
        consensus: Optional[ConsensusResult],
    ) -> Decision:
        signals = await self.gather_signals(topic)
        decision = self.engine.evaluate(
            DecisionInput(
                topic=topic,
                arbitrage=opportunity,
                consensus=consensus,
                sentiment=signals.sentiment,
                whale=signals.whale,
                social=signals.social,
            ),
            calibration_multiplier=self.calibration_multiplier,
        )
        decision.warnings.extend(signals.warnings)
        return decision

    async def _route(self, decision: Decision, alert: TriggeredAlert) -> None:
        notify = self.notify
        if notify is not None and not self.deduper.should_send(alert):
            notify = None
        sent = await route_decision(decision, self.audit, notify, logger=self.logger)
        if sent:
            self.deduper.record(alert)
            self.state.total_alerts_sent += 1

    async def gather_signals(self, topic: str) -> ExternalSignals:
        """Ask each external provider for the topic; a failing provider leaves its signal absent."""
        signals = ExternalSignals()
        providers = (
            ("sentiment", self.sentiment, "sentiment"),
            ("whale", self.whales, "whale_signal"),
            ("social", self.social, "social"),
        )
        for name, provider, method in providers:
            if provider is None:
                continue
            try:
                value = await getattr(provider, method)(topic)
            except Exception as exc:
                signals.warnings.append(f"{name} provider failed: {exc}")
                self.logger.warn("signal provider failed", provider=name, topic=topic, error=str(exc))
                continue
            setattr(signals, name, value)
        return signals

    async def _whale_scan(self, summary: CycleSummary) -> bool:
        if self.whale_scanner is None:
            return False
        activity = await self.whale_scanner.scan()
        sent = await self._send_alerts([whale_alert(item) for item in activity])
        self.state.total_whale_alerts += sent
        summary.alerts_sent += sent
        self.state.last_whale_scan = summary.started_at
        return True

    async def _calibration_check(self, summary: CycleSummary) -> bool:
        if self.ledger is None:
            return False
        stats = self.ledger.aggregate()
        self.calibration_multiplier = self.ledger.calibration_multiplier(stats)
        self.logger.info(
            "calibration check",
            report=format_report(stats),
            multiplier=round(self.calibration_multiplier, 4),
            **stats.to_dict(),
        )
        self.state.last_calibration_check = summary.started_at
        return True

    async def _send_alerts(self, alerts: List[TriggeredAlert]) -> int:
        sent = 0
        for alert in self.deduper.filter(alerts):
            if await safe_notify_alert(self.notify, alert, self.logger):
                self.deduper.record(alert)
                sent += 1
        self.state.total_alerts_sent += sent
        return sent


__all__ = [
    "SchedulerState",
    "SchedulerStateStore",
    "CycleSummary",
    "Heartbeat",
    "SentimentProvider",
    "WhaleActivityProvider",
    "SocialProvider",
    "WhaleScanner",
    "SnapshotSink",
]
