"""
tests/test_factory.py

Tests for RuleFactory, RuleDefinition and load_rule_definitions().
"""

from __future__ import annotations

import json

import pytest

from authguard.backend.engine.factory import (
    BUILTIN_RULES,
    RuleDefinition,
    RuleFactory,
    load_rule_definitions,
)
from authguard.backend.engine.models import RuleStatus, Severity
from authguard.backend.engine.rules.brute_force import BruteForceRule
from authguard.backend.engine.rules.time_anomaly import TimeAnomalyRule
from authguard.backend.errors import InvalidConfigurationError, UnknownRuleTypeError


class TestCreateRule:

    def test_available_types(self):
        factory = RuleFactory()
        assert factory.available_types() == [
            "brute-force",
            "ip-hopping",
            "session-hijacking",
            "geo-anomaly",
            "credential-stuffing",
            "account-enumeration",
            "time-anomaly",
        ]
        assert factory.is_supported("ip-hopping")
        assert not factory.is_supported("port-scan")

    def test_defaults(self):
        rule = RuleFactory().create_rule("brute-force")
        assert isinstance(rule, BruteForceRule)
        assert rule.config.threshold == 5
        assert rule.is_active

    def test_overrides(self):
        rule = RuleFactory().create_rule("brute-force", {
            "id": "bf-strict",
            "severity": "CRITICAL",
            "status": "TESTING",
            "config": {"threshold": 3},
        })
        assert rule.id == "bf-strict"
        assert rule.severity is Severity.CRITICAL
        assert rule.status is RuleStatus.TESTING
        assert rule.config.threshold == 3
        assert rule.config.time_window_minutes == 15

    def test_unknown_type(self):
        with pytest.raises(UnknownRuleTypeError) as excinfo:
            RuleFactory().create_rule("port-scan")
        assert "port-scan" in str(excinfo.value)
        assert "brute-force" in excinfo.value.known

    def test_invalid_config_rejected(self):
        with pytest.raises(InvalidConfigurationError):
            RuleFactory().create_rule("brute-force", {"config": {"threshold": 0}})

    def test_unknown_option_rejected(self):
        with pytest.raises(InvalidConfigurationError):
            RuleFactory().create_rule("brute-force", {"config": {"treshold": 3}})

    def test_bad_severity_rejected(self):
        with pytest.raises(InvalidConfigurationError):
            RuleFactory().create_rule("brute-force", {"severity": "APOCALYPTIC"})

    def test_create_default_rules(self):
        rules = RuleFactory().create_default_rules()
        assert len(rules) == len(BUILTIN_RULES)
        assert all(rule.validate() for rule in rules)
        assert len({rule.id for rule in rules}) == len(rules)

    def test_restricted_factory(self):
        factory = RuleFactory((TimeAnomalyRule,))
        assert factory.available_types() == ["time-anomaly"]
        factory.register_type(BruteForceRule)
        assert factory.is_supported("brute-force")


class TestDefinitions:

    def test_camel_case_definition(self):
        definition = RuleDefinition.model_validate({
            "type": "time-anomaly",
            "id": "business-hours",
            "config": {"allowedHours": {"start": 7, "end": 19}},
        })
        rule = RuleFactory().create_from_definition(definition)
        assert rule.id == "business-hours"
        assert rule.config.allowed_hours == {"start": 7, "end": 19}

    def test_to_definition_round_trip(self):
        factory = RuleFactory()
        original = factory.create_rule("geo-anomaly", {"config": {"allowedCountries": ["DE"]}})
        rebuilt = factory.create_from_definition(factory.to_definition(original))
        assert rebuilt.to_dict() == original.to_dict()

    def test_validate_definition(self):
        factory = RuleFactory()
        assert factory.validate_definition({"type": "ip-hopping"}) == (True, [])

        ok, errors = factory.validate_definition({"type": "nope"})
        assert not ok and "nope" in errors[0]

        ok, errors = factory.validate_definition({"id": "missing-type"})
        assert not ok and errors

        ok, errors = factory.validate_definition(
            {"type": "ip-hopping", "config": {"patterns": ["teleport"]}},
        )
        assert not ok


class TestLoadRuleDefinitions:

    def test_load(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps([
            {"type": "brute-force", "id": "bf-strict", "severity": "CRITICAL",
             "config": {"threshold": 3}},
            {"type": "time-anomaly", "status": "TESTING"},
        ]))
        definitions = load_rule_definitions(path)

        assert [d.type for d in definitions] == ["brute-force", "time-anomaly"]
        assert definitions[0].severity is Severity.CRITICAL
        assert definitions[1].status is RuleStatus.TESTING

    def test_malformed_file(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text('{"type": "brute-force"}')    # not a list
        with pytest.raises(InvalidConfigurationError):
            load_rule_definitions(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_rule_definitions(tmp_path / "absent.json")
