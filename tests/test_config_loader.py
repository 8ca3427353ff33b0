from pathlib import Path

import pytest
import yaml

from utils.config_loader import ConfigLoader, DEFAULT_ALERT_COOLDOWNS

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _write(tmp_path, name, payload):
    config_dir = tmp_path / "config"
    config_dir.mkdir(exist_ok=True)
    (config_dir / name).write_text(yaml.safe_dump(payload))


def test_shipped_example_parses():
    settings = ConfigLoader(PROJECT_ROOT).load_settings()
    assert settings.matching.match_threshold == 0.35
    assert settings.heartbeat.topics == ["", "bitcoin", "fed rate cut"]
    assert settings.enabled_venues() == ["polymarket", "manifold"]
    assert settings.fees()["kalshi"] == 0.01
    assert settings.alerts.price_rules[0].rule_id == "btc-breakout"


def test_empty_file_uses_defaults(tmp_path):
    (tmp_path / "config").mkdir()
    (tmp_path / "config" / "settings.yaml").write_text("")
    settings = ConfigLoader(tmp_path).load_settings()
    assert settings.arbitrage.min_spread == 0.03
    assert settings.decision.consensus_weight == 0.35
    assert settings.calibration.min_resolved == 5
    assert settings.heartbeat.topics == [""]
    assert settings.venues == {}
    assert settings.alerts.cooldowns_sec == DEFAULT_ALERT_COOLDOWNS
    assert settings.database.dsn.startswith("sqlite")


def test_venue_defaults_follow_known_venues(tmp_path):
    _write(
        tmp_path,
        "settings.yaml",
        {
            "venues": {"Kalshi": None, "newvenue": {"enabled": False, "timeout_sec": 2}},
            "consensus": {"default_reliability": 0.4},
        },
    )
    settings = ConfigLoader(tmp_path).load_settings()
    assert settings.venues["kalshi"].fee == 0.01
    assert settings.venues["kalshi"].reliability == 0.95
    assert settings.venues["newvenue"].reliability == 0.4
    assert settings.venues["newvenue"].timeout_sec == 2.0
    assert settings.enabled_venues() == ["kalshi"]


def test_overrides_and_rule_validation(tmp_path):
    _write(
        tmp_path,
        "settings.yaml",
        {
            "decision": {"weights": {"whale": 0.2}, "execute_threshold": 80},
            "logging": {"level": "debug"},
            "alerts": {
                "cooldowns_sec": {"arbitrage": 60},
                "price_rules": [
                    {"rule_id": "r1", "threshold": 0.3, "direction": "BELOW", "market_id": "m1"},
                    {"threshold": 0.5},
                ],
            },
        },
    )
    settings = ConfigLoader(tmp_path).load_settings()
    assert settings.decision.whale_weight == 0.2
    assert settings.decision.sentiment_weight == 0.15
    assert settings.decision.execute_threshold == 80.0
    assert settings.logging.level == "DEBUG"
    assert settings.alerts.cooldowns_sec["arbitrage"] == 60.0
    assert settings.alerts.cooldowns_sec["whale"] == 7200
    assert [rule.rule_id for rule in settings.alerts.price_rules] == ["r1"]
    assert settings.alerts.price_rules[0].direction == "below"


def test_local_file_is_a_fallback(tmp_path):
    _write(tmp_path, "settings.local.yaml", {"arbitrage": {"max_opportunities": 3}})
    _write(tmp_path, "settings.example.yaml", {"arbitrage": {"max_opportunities": 7}})
    assert ConfigLoader(tmp_path).load_settings().arbitrage.max_opportunities == 3


def test_missing_config_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        ConfigLoader(tmp_path).load_settings()
