"""
tests/test_rule_config.py

Tests for engine/rules/base.py — option-name normalisation, config merging
and the shared history helpers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import pytest

from authguard.backend.engine.models import HistoricalEvent, RuleContext, SecurityEventType
from authguard.backend.engine.rules.base import (
    build_config,
    chronological,
    country_of,
    normalise_key,
    of_type,
    within_window,
)
from authguard.backend.engine.rules.account_enumeration import AccountEnumerationRule
from authguard.backend.engine.rules.brute_force import BruteForceRule
from authguard.backend.engine.rules.credential_stuffing import CredentialStuffingRule
from authguard.backend.engine.rules.geo_anomaly import GeoAnomalyRule
from authguard.backend.engine.rules.session_hijacking import SessionHijackingRule
from authguard.backend.errors import InvalidConfigurationError

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


@dataclass(slots=True)
class SampleConfig:
    max_ips_threshold: int = 3
    levels: dict[str, int] = field(default_factory=lambda: {"low": 1, "high": 9})


@pytest.mark.parametrize("raw, expected", [
    ("maxIpsThreshold", "max_ips_threshold"),
    ("max_ips_threshold", "max_ips_threshold"),
    ("lookbackMinutes", "lookback_minutes"),
    ("threshold", "threshold"),
])
def test_normalise_key(raw, expected):
    assert normalise_key(raw) == expected


class TestBuildConfig:

    def test_no_overrides(self):
        assert build_config(SampleConfig, None) == SampleConfig()

    def test_camel_case_override(self):
        assert build_config(SampleConfig, {"maxIpsThreshold": 7}).max_ips_threshold == 7

    def test_nested_dict_merged(self):
        cfg = build_config(SampleConfig, {"levels": {"high": 20}})
        assert cfg.levels == {"low": 1, "high": 20}

    def test_defaults_not_shared(self):
        build_config(SampleConfig, {"levels": {"high": 20}})
        assert SampleConfig().levels["high"] == 9

    def test_unknown_option(self):
        with pytest.raises(InvalidConfigurationError, match="maxIps"):
            build_config(SampleConfig, {"maxIps": 1})

    def test_alias(self):
        cfg = build_config(SampleConfig, {"ipLimit": 4}, {"ip_limit": "max_ips_threshold"})
        assert cfg.max_ips_threshold == 4

    def test_ignored_option_dropped(self):
        cfg = build_config(SampleConfig, {"countField": "x", "maxIpsThreshold": 2}, ignored={"count_field"})
        assert cfg == SampleConfig(max_ips_threshold=2)

    def test_ignored_does_not_hide_other_unknowns(self):
        with pytest.raises(InvalidConfigurationError, match="bogus"):
            build_config(SampleConfig, {"countField": "x", "bogus": 1}, ignored={"count_field"})


class TestLegacyOptions:
    """Stored definitions may still carry options these rules no longer use."""

    @pytest.mark.parametrize("rule_class, config", [
        (BruteForceRule, {"countField": "failedAttempts"}),
        (SessionHijackingRule, {"patterns": ["ip-change", "geo-jump"], "matchType": "any"}),
        (CredentialStuffingRule, {
            "patterns": ["bot-pattern"], "matchType": "any",
            "suspiciousUserAgents": ["python", "curl"],
        }),
        (AccountEnumerationRule, {"patterns": ["timing-analysis"], "matchType": "all"}),
        (GeoAnomalyRule, {"maxDistanceKm": 5000, "checkVelocity": True, "userPatternLearning": True}),
    ])
    def test_accepted_and_ignored(self, rule_class, config):
        rule = rule_class(config=config)
        assert rule.validate()
        assert rule.config == rule_class.config_class()

    def test_used_options_still_applied(self):
        rule = BruteForceRule(config={"countField": "failedAttempts", "threshold": 8})
        assert rule.config.threshold == 8

    def test_unknown_option_still_rejected(self):
        with pytest.raises(InvalidConfigurationError, match="countFeld"):
            BruteForceRule(config={"countFeld": "failedAttempts"})


class TestRuleIdentity:

    def test_defaults(self):
        rule = BruteForceRule()
        d = rule.to_dict()
        assert d["type"] == "brute-force"
        assert d["status"] == "ACTIVE"
        assert d["conditionType"] == "THRESHOLD"
        assert d["tags"] == ["brute-force", "authentication", "login"]
        assert d["config"]["threshold"] == 5
        assert rule.describe()

    def test_bad_status(self):
        with pytest.raises(InvalidConfigurationError):
            BruteForceRule(status="PAUSED")


def _event(minutes_ago: float, event_type=SecurityEventType.LOGIN_FAILED, **metadata) -> HistoricalEvent:
    return HistoricalEvent(
        timestamp=NOW - timedelta(minutes=minutes_ago), event_type=event_type, metadata=metadata,
    )


class TestHistoryHelpers:

    def test_within_window_inclusive(self):
        history = (_event(15), _event(15.01), _event(1))
        ctx = RuleContext(timestamp=NOW, event_type=SecurityEventType.LOGIN_FAILED, recent_events=history)
        assert within_window(ctx, 15) == [history[0], history[2]]

    def test_chronological(self):
        a, b = _event(1), _event(5)
        assert chronological([a, b]) == [b, a]

    def test_of_type(self):
        ok = _event(1, SecurityEventType.LOGIN_SUCCESS)
        assert of_type([_event(2), ok], SecurityEventType.LOGIN_SUCCESS) == [ok]

    def test_country_of(self):
        assert country_of({"country": "DE"}) == "DE"
        assert country_of({"location": {"country": "FR"}}) == "FR"
        assert country_of({"location": "somewhere"}) is None
        assert country_of({}) is None
