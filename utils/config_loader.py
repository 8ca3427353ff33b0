from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yaml

DEFAULT_RELIABILITY = {
    "polymarket": 1.0,
    "kalshi": 0.95,
    "metaculus": 0.90,
    "limitless": 0.80,
    "manifold": 0.70,
}

DEFAULT_FEES = {
    "polymarket": 0.005,
    "kalshi": 0.01,
    "limitless": 0.01,
    "manifold": 0.0,
    "metaculus": 0.0,
}

DEFAULT_ALERT_COOLDOWNS = {
    "arbitrage": 30 * 60,
    "whale": 2 * 60 * 60,
    "price": 60 * 60,
    "divergence": 2 * 60 * 60,
    "default": 60 * 60,
}


@dataclass(slots=True)
class MatchingConfig:
    match_threshold: float = 0.35
    related_threshold: float = 0.25
    sequence_weight: float = 0.4
    token_weight: float = 0.6
    entity_boost: float = 0.5
    disjoint_entity_penalty: float = 0.5
    strict_invariants: bool = False


@dataclass(slots=True)
class ArbitrageConfig:
    min_spread: float = 0.03
    min_volume: float = 1000.0
    max_opportunities: int = 10


@dataclass(slots=True)
class ConsensusConfig:
    default_reliability: float = 0.5
    divergence_agreement: float = 0.8
    divergence_min_liquidity: float = 10000.0


@dataclass(slots=True)
class DecisionConfig:
    consensus_weight: float = 0.35
    arbitrage_weight: float = 0.25
    sentiment_weight: float = 0.15
    whale_weight: float = 0.15
    social_weight: float = 0.10
    execute_threshold: float = 70.0
    watch_threshold: float = 45.0
    arb_volume_bonus_above: float = 10000.0
    arb_low_volume_below: float = 1000.0
    low_match_confidence: float = 0.5
    whale_floor_usd: float = 10000.0
    whale_size_scale_usd: float = 90000.0
    default_wallet_accuracy: float = 0.5


@dataclass(slots=True)
class CalibrationConfig:
    well_calibrated: float = 0.15
    poorly_calibrated: float = 0.25
    moderate_penalty: float = 0.10
    floor: float = 0.5
    worst_brier: float = 0.5
    min_resolved: int = 5


@dataclass(slots=True)
class HeartbeatConfig:
    tick_interval_sec: float = 300.0
    snapshot_interval_sec: float = 300.0
    arb_scan_interval_sec: float = 300.0
    whale_scan_interval_sec: float = 900.0
    calibration_interval_sec: float = 3600.0
    decisions_per_scan: int = 3
    topics: List[str] = field(default_factory=lambda: [""])
    snapshot_retention_hours: float = 48.0


@dataclass(slots=True)
class VenueConfig:
    name: str
    enabled: bool = True
    fee: float = 0.0
    reliability: float = 0.5
    timeout_sec: float = 4.0
    base_url: Optional[str] = None
    requests_per_minute: int = 60
    burst: int = 5
    page_size: int = 25


@dataclass(slots=True)
class TelegramConfig:
    enabled: bool = False
    token: Optional[str] = None
    chat_id: Optional[str] = None
    forward_errors: bool = False


@dataclass(slots=True)
class DatabaseConfig:
    backend: str = "sqlite"
    dsn: str = "sqlite+aiosqlite:///data/market_intel.db"


@dataclass(slots=True)
class StorageConfig:
    state_path: str = "data/heartbeat_state.json"
    calibration_path: str = "data/predictions.json"
    cache_ttl_sec: float = 30.0


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass(slots=True)
class PriceAlertConfig:
    rule_id: str
    threshold: float
    direction: str = "above"
    market_id: Optional[str] = None
    venue: Optional[str] = None
    topic: Optional[str] = None


@dataclass(slots=True)
class AlertsConfig:
    cooldowns_sec: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_ALERT_COOLDOWNS))
    price_rules: List[PriceAlertConfig] = field(default_factory=list)


@dataclass(slots=True)
class Settings:
    matching: MatchingConfig
    arbitrage: ArbitrageConfig
    consensus: ConsensusConfig
    decision: DecisionConfig
    calibration: CalibrationConfig
    heartbeat: HeartbeatConfig
    venues: Dict[str, VenueConfig]
    telegram: TelegramConfig
    database: DatabaseConfig
    storage: StorageConfig
    logging: LoggingConfig
    alerts: AlertsConfig

    def fees(self) -> Dict[str, float]:
        return {name: cfg.fee for name, cfg in self.venues.items()}

    def reliability(self) -> Dict[str, float]:
        return {name: cfg.reliability for name, cfg in self.venues.items()}

    def enabled_venues(self) -> List[str]:
        return [name for name, cfg in self.venues.items() if cfg.enabled]


class ConfigLoader:
    """Loads configuration files for the intelligence core."""

    def __init__(self, base_path: Path | None = None):
        self.base_path = base_path or Path(__file__).resolve().parent.parent
        self._config_dir = self.base_path / "config"

    def _resolve_config_file(self, filename: str, fallbacks: list[str] | None = None) -> Path:
        candidates = [self._config_dir / filename]
        if fallbacks:
            candidates.extend(self._config_dir / name for name in fallbacks)
        for path in candidates:
            if path.exists():
                return path
        searched = ", ".join(str(path) for path in candidates)
        raise FileNotFoundError(f"missing config file; searched: {searched}")

    def load_settings(self) -> Settings:
        settings_path = self._resolve_config_file(
            "settings.yaml",
            ["settings.local.yaml", "settings.example.yaml"],
        )
        with settings_path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
        return self._parse_settings(raw)

    def _parse_settings(self, raw: Dict[str, object]) -> Settings:
        matching_cfg = raw.get("matching", {}) or {}
        arb_cfg = raw.get("arbitrage", {}) or {}
        consensus_cfg = raw.get("consensus", {}) or {}
        decision_cfg = raw.get("decision", {}) or {}
        calibration_cfg = raw.get("calibration", {}) or {}
        heartbeat_cfg = raw.get("heartbeat", {}) or {}
        telegram_cfg = raw.get("telegram", {}) or {}
        db_cfg = raw.get("database", {}) or {}
        storage_cfg = raw.get("storage", {}) or {}
        logging_cfg = raw.get("logging", {}) or {}
        alerts_cfg = raw.get("alerts", {}) or {}

        matching = MatchingConfig(
            match_threshold=float(matching_cfg.get("match_threshold", 0.35)),
            related_threshold=float(matching_cfg.get("related_threshold", 0.25)),
            sequence_weight=float(matching_cfg.get("sequence_weight", 0.4)),
            token_weight=float(matching_cfg.get("token_weight", 0.6)),
            entity_boost=float(matching_cfg.get("entity_boost", 0.5)),
            disjoint_entity_penalty=float(matching_cfg.get("disjoint_entity_penalty", 0.5)),
            strict_invariants=bool(matching_cfg.get("strict_invariants", False)),
        )

        arbitrage = ArbitrageConfig(
            min_spread=float(arb_cfg.get("min_spread", 0.03)),
            min_volume=float(arb_cfg.get("min_volume", 1000.0)),
            max_opportunities=int(arb_cfg.get("max_opportunities", 10)),
        )

        consensus = ConsensusConfig(
            default_reliability=float(consensus_cfg.get("default_reliability", 0.5)),
            divergence_agreement=float(consensus_cfg.get("divergence_agreement", 0.8)),
            divergence_min_liquidity=float(consensus_cfg.get("divergence_min_liquidity", 10000.0)),
        )

        weights = decision_cfg.get("weights", {}) or {}
        decision = DecisionConfig(
            consensus_weight=float(weights.get("consensus", 0.35)),
            arbitrage_weight=float(weights.get("arbitrage", 0.25)),
            sentiment_weight=float(weights.get("sentiment", 0.15)),
            whale_weight=float(weights.get("whale", 0.15)),
            social_weight=float(weights.get("social", 0.10)),
            execute_threshold=float(decision_cfg.get("execute_threshold", 70.0)),
            watch_threshold=float(decision_cfg.get("watch_threshold", 45.0)),
            arb_volume_bonus_above=float(decision_cfg.get("arb_volume_bonus_above", 10000.0)),
            arb_low_volume_below=float(decision_cfg.get("arb_low_volume_below", 1000.0)),
            low_match_confidence=float(decision_cfg.get("low_match_confidence", 0.5)),
            whale_floor_usd=float(decision_cfg.get("whale_floor_usd", 10000.0)),
            whale_size_scale_usd=float(decision_cfg.get("whale_size_scale_usd", 90000.0)),
            default_wallet_accuracy=float(decision_cfg.get("default_wallet_accuracy", 0.5)),
        )

        calibration = CalibrationConfig(
            well_calibrated=float(calibration_cfg.get("well_calibrated", 0.15)),
            poorly_calibrated=float(calibration_cfg.get("poorly_calibrated", 0.25)),
            moderate_penalty=float(calibration_cfg.get("moderate_penalty", 0.10)),
            floor=float(calibration_cfg.get("floor", 0.5)),
            worst_brier=float(calibration_cfg.get("worst_brier", 0.5)),
            min_resolved=int(calibration_cfg.get("min_resolved", 5)),
        )

        topics = heartbeat_cfg.get("topics")
        heartbeat = HeartbeatConfig(
            tick_interval_sec=float(heartbeat_cfg.get("tick_interval_sec", 300.0)),
            snapshot_interval_sec=float(heartbeat_cfg.get("snapshot_interval_sec", 300.0)),
            arb_scan_interval_sec=float(heartbeat_cfg.get("arb_scan_interval_sec", 300.0)),
            whale_scan_interval_sec=float(heartbeat_cfg.get("whale_scan_interval_sec", 900.0)),
            calibration_interval_sec=float(heartbeat_cfg.get("calibration_interval_sec", 3600.0)),
            decisions_per_scan=int(heartbeat_cfg.get("decisions_per_scan", 3)),
            topics=[str(topic) for topic in topics] if topics else [""],
            snapshot_retention_hours=float(heartbeat_cfg.get("snapshot_retention_hours", 48.0)),
        )

        venues: Dict[str, VenueConfig] = {}
        for name, cfg in (raw.get("venues", {}) or {}).items():
            cfg = cfg or {}
            key = str(name).lower()
            venues[key] = VenueConfig(
                name=key,
                enabled=bool(cfg.get("enabled", True)),
                fee=float(cfg.get("fee", DEFAULT_FEES.get(key, 0.0))),
                reliability=float(
                    cfg.get("reliability", DEFAULT_RELIABILITY.get(key, consensus.default_reliability))
                ),
                timeout_sec=float(cfg.get("timeout_sec", 4.0)),
                base_url=cfg.get("base_url"),
                requests_per_minute=int(cfg.get("requests_per_minute", 60)),
                burst=int(cfg.get("burst", 5)),
                page_size=int(cfg.get("page_size", 25)),
            )

        telegram = TelegramConfig(
            enabled=bool(telegram_cfg.get("enabled", False)),
            token=telegram_cfg.get("token"),
            chat_id=telegram_cfg.get("chat_id"),
            forward_errors=bool(telegram_cfg.get("forward_errors", False)),
        )

        database = DatabaseConfig(
            backend=db_cfg.get("backend", "sqlite"),
            dsn=db_cfg.get("dsn", "sqlite+aiosqlite:///data/market_intel.db"),
        )

        storage = StorageConfig(
            state_path=str(storage_cfg.get("state_path", "data/heartbeat_state.json")),
            calibration_path=str(storage_cfg.get("calibration_path", "data/predictions.json")),
            cache_ttl_sec=float(storage_cfg.get("cache_ttl_sec", 30.0)),
        )

        log_settings = LoggingConfig(
            level=str(logging_cfg.get("level", "INFO")).upper(),
            file=logging_cfg.get("file"),
        )

        cooldowns = dict(DEFAULT_ALERT_COOLDOWNS)
        for name, seconds in (alerts_cfg.get("cooldowns_sec", {}) or {}).items():
            cooldowns[str(name)] = float(seconds)
        rules: List[PriceAlertConfig] = []
        for item in alerts_cfg.get("price_rules", []) or []:
            if {"rule_id", "threshold"} - item.keys():
                continue
            rules.append(
                PriceAlertConfig(
                    rule_id=str(item["rule_id"]),
                    threshold=float(item["threshold"]),
                    direction=str(item.get("direction", "above")).lower(),
                    market_id=item.get("market_id"),
                    venue=item.get("venue"),
                    topic=item.get("topic"),
                )
            )
        alerts = AlertsConfig(cooldowns_sec=cooldowns, price_rules=rules)

        return Settings(
            matching=matching,
            arbitrage=arbitrage,
            consensus=consensus,
            decision=decision,
            calibration=calibration,
            heartbeat=heartbeat,
            venues=venues,
            telegram=telegram,
            database=database,
            storage=storage,
            logging=log_settings,
            alerts=alerts,
        )
