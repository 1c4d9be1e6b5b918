"""
engine/rules/base.py

Abstract base class that all detection rules must implement.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from datetime import timedelta
from typing import Any, ClassVar

from ...errors import InvalidConfigurationError
from ..models import (
    ConditionType,
    EvaluationResult,
    HistoricalEvent,
    RuleContext,
    RuleStatus,
    SecurityEventType,
    Severity,
)

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def normalise_key(key: str) -> str:
    """maxIpsThreshold -> max_ips_threshold; snake_case keys pass through."""
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def build_config(
    config_class: type,
    overrides: Mapping[str, Any] | None,
    aliases: Mapping[str, str] | None = None,
    ignored: Iterable[str] = (),
) -> Any:
    """
    Defaults of *config_class* with *overrides* merged on top.

    Keys in *ignored* (snake_case) are accepted and dropped. Any other key
    that is not a field of *config_class* raises InvalidConfigurationError.
    """
    defaults = config_class()
    if not overrides:
        return defaults
    known = {f.name for f in dataclasses.fields(config_class)}
    merged: dict[str, Any] = {}
    unknown: list[str] = []
    for key, value in overrides.items():
        name = normalise_key(key)
        name = (aliases or {}).get(name, name)
        if name not in known:
            if name in ignored:
                logger.debug("%s: ignoring unused option %r", config_class.__name__, key)
                continue
            unknown.append(key)
            continue
        current = getattr(defaults, name)
        if isinstance(current, dict) and isinstance(value, Mapping):
            # nested tables such as severity thresholds are merged key by key
            value = {**current, **value}
        merged[name] = value
    if unknown:
        raise InvalidConfigurationError(
            f"{config_class.__name__} has no option(s) {sorted(unknown)}"
        )
    return dataclasses.replace(defaults, **merged)


class BaseRule(ABC):
    """
    Contract that every detection rule must satisfy.

    Class-level attributes:
        rule_type      — factory key, e.g. "ip-hopping"
        config_class   — dataclass holding the rule's tunables and defaults
        config_aliases — legacy option names mapped onto config fields
        ignored_options — legacy option names accepted without effect
        condition_type — rule family
        default_*      — identity used when the caller supplies none

    evaluate() MUST:
        - Return EvaluationResult.no_match() when required fields are absent
        - Only raise for genuine programmer errors (the engine isolates them)
        - Put only JSON-serializable types in evidence
    """

    rule_type: ClassVar[str] = ""
    config_class: ClassVar[type]
    config_aliases: ClassVar[dict[str, str]] = {}
    ignored_options: ClassVar[frozenset[str]] = frozenset()
    condition_type: ClassVar[ConditionType] = ConditionType.PATTERN

    default_id: ClassVar[str] = ""
    default_name: ClassVar[str] = ""
    default_description: ClassVar[str] = ""
    default_severity: ClassVar[Severity] = Severity.MEDIUM
    default_tags: ClassVar[tuple[str, ...]] = ()

    def __init__(
        self,
        *,
        id: str | None = None,
        name: str | None = None,
        description: str | None = None,
        version: str | None = None,
        status: RuleStatus | str | None = None,
        severity: Severity | str | None = None,
        tags: Iterable[str] | None = None,
        config: Mapping[str, Any] | None = None,
    ) -> None:
        self.id: str = id or self.default_id
        self.name: str = name or self.default_name
        self.description: str = description or self.default_description
        self.version: str = version or "1.0.0"
        try:
            self.status = RuleStatus(status) if status else RuleStatus.ACTIVE
            self.severity = Severity(severity) if severity else self.default_severity
        except ValueError as exc:
            raise InvalidConfigurationError(f"rule {self.id!r}: {exc}") from exc
        self.tags: list[str] = list(tags) if tags is not None else list(self.default_tags)
        self.config = build_config(
            self.config_class, config, self.config_aliases, self.ignored_options,
        )

    @abstractmethod
    async def evaluate(self, context: RuleContext) -> EvaluationResult:
        """Evaluate one context. Non-matches are returned, never raised."""
        ...

    @abstractmethod
    def validate(self) -> bool:
        """Structural check of self.config. Pure and idempotent."""
        ...

    @abstractmethod
    def describe(self) -> str:
        ...

    @property
    def is_active(self) -> bool:
        return self.status is RuleStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.rule_type,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "status": self.status.value,
            "severity": self.severity.value,
            "conditionType": self.condition_type.value,
            "tags": list(self.tags),
            "config": dataclasses.asdict(self.config),
        }

    def __repr__(self) -> str:
        return f"<Rule:{self.id} {self.status.value} {self.severity.value}>"


# ---------------------------------------------------------------------------
# History helpers shared by the concrete rules
# ---------------------------------------------------------------------------

def within_window(
    context: RuleContext, minutes: float, events: Iterable[HistoricalEvent] | None = None,
) -> list[HistoricalEvent]:
    """Recent events no older than *minutes* before the context timestamp."""
    cutoff = context.timestamp - timedelta(minutes=minutes)
    source = context.recent_events if events is None else events
    return [e for e in source if e.timestamp >= cutoff]


def chronological(events: Iterable[HistoricalEvent]) -> list[HistoricalEvent]:
    """Oldest first; ties keep their original order."""
    return sorted(events, key=lambda e: e.timestamp)


def of_type(events: Iterable[HistoricalEvent], *types: SecurityEventType) -> list[HistoricalEvent]:
    return [e for e in events if e.event_type in types]


def country_of(metadata: Mapping[str, Any]) -> str | None:
    """metadata.country, falling back to metadata.location.country."""
    country = metadata.get("country")
    if country:
        return country
    location = metadata.get("location")
    if isinstance(location, Mapping):
        return location.get("country")
    return None
