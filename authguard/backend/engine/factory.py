"""
engine/factory.py

RuleFactory — builds rule instances from a type key plus stored overrides.

Rule definitions are stored as JSON (see RuleDefinition):

    [
      {"type": "brute-force", "id": "bf-strict",
       "severity": "CRITICAL", "config": {"threshold": 3}},
      {"type": "time-anomaly", "status": "TESTING",
       "config": {"allowedHours": {"start": 7, "end": 19}}}
    ]
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from ..errors import InvalidConfigurationError, UnknownRuleTypeError
from .models import RuleStatus, Severity
from .rules.account_enumeration import AccountEnumerationRule
from .rules.base import BaseRule
from .rules.brute_force import BruteForceRule
from .rules.credential_stuffing import CredentialStuffingRule
from .rules.geo_anomaly import GeoAnomalyRule
from .rules.ip_hopping import IpHoppingRule
from .rules.session_hijacking import SessionHijackingRule
from .rules.time_anomaly import TimeAnomalyRule

logger = logging.getLogger(__name__)

# Registration order is also the default evaluation order
BUILTIN_RULES: tuple[type[BaseRule], ...] = (
    BruteForceRule,
    IpHoppingRule,
    SessionHijackingRule,
    GeoAnomalyRule,
    CredentialStuffingRule,
    AccountEnumerationRule,
    TimeAnomalyRule,
)


class RuleDefinition(BaseModel):
    """Stored form of one rule: a type key plus overrides on the type's defaults."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: str
    id: str | None = None
    name: str | None = None
    description: str | None = None
    version: str | None = None
    status: RuleStatus | None = None
    severity: Severity | None = None
    tags: list[str] | None = None
    config: dict[str, Any] = Field(default_factory=dict)

    def overrides(self) -> dict[str, Any]:
        return self.model_dump(exclude={"type"}, exclude_none=True)


_DEFINITIONS = TypeAdapter(list[RuleDefinition])


def load_rule_definitions(path: str | Path) -> list[RuleDefinition]:
    """Read a JSON list of rule definitions from *path*."""
    text = Path(path).read_text(encoding="utf-8")
    try:
        return _DEFINITIONS.validate_json(text)
    except ValidationError as exc:
        raise InvalidConfigurationError(f"invalid rule file {path}: {exc}") from exc


class RuleFactory:
    def __init__(self, rule_classes: tuple[type[BaseRule], ...] = BUILTIN_RULES) -> None:
        self._classes: dict[str, type[BaseRule]] = {cls.rule_type: cls for cls in rule_classes}

    def register_type(self, rule_class: type[BaseRule]) -> None:
        self._classes[rule_class.rule_type] = rule_class

    def available_types(self) -> list[str]:
        return list(self._classes)

    def is_supported(self, rule_type: str) -> bool:
        return rule_type in self._classes

    def create_rule(self, rule_type: str, data: Mapping[str, Any] | None = None) -> BaseRule:
        """
        Build a rule of *rule_type* with *data* (id, name, …, config) merged
        over its defaults. Raises UnknownRuleTypeError or
        InvalidConfigurationError.
        """
        rule_class = self._classes.get(rule_type)
        if rule_class is None:
            raise UnknownRuleTypeError(rule_type, self.available_types())

        data = dict(data or {})
        try:
            rule = rule_class(
                id=data.get("id"),
                name=data.get("name"),
                description=data.get("description"),
                version=data.get("version"),
                status=data.get("status"),
                severity=data.get("severity"),
                tags=data.get("tags"),
                config=data.get("config"),
            )
        except TypeError as exc:
            raise InvalidConfigurationError(f"{rule_type}: {exc}") from exc

        if not rule.validate():
            raise InvalidConfigurationError(
                f"Invalid rule configuration for {rule_type}: {data.get('config') or {}}"
            )
        logger.debug("Created rule instance: %s (%s)", rule.name, rule.id)
        return rule

    def create_from_definition(self, definition: RuleDefinition) -> BaseRule:
        return self.create_rule(definition.type, definition.overrides())

    def create_default_rules(self) -> list[BaseRule]:
        return [cls() for cls in self._classes.values()]

    def to_definition(self, rule: BaseRule) -> RuleDefinition:
        return RuleDefinition(
            type=rule.rule_type,
            id=rule.id,
            name=rule.name,
            description=rule.description,
            version=rule.version,
            status=rule.status,
            severity=rule.severity,
            tags=list(rule.tags),
            config=dataclasses.asdict(rule.config),
        )

    def validate_definition(
        self, definition: RuleDefinition | Mapping[str, Any],
    ) -> tuple[bool, list[str]]:
        """Dry-run construction. Returns (valid, error messages)."""
        try:
            if not isinstance(definition, RuleDefinition):
                definition = RuleDefinition.model_validate(definition)
            self.create_from_definition(definition)
        except ValidationError as exc:
            return False, [err["msg"] for err in exc.errors()]
        except (UnknownRuleTypeError, InvalidConfigurationError) as exc:
            return False, [str(exc)]
        return True, []
