"""
engine/rules/geo_anomaly.py

GeoAnomalyRule — country-level checks on successful logins.

    blocked country          CRITICAL 100
    outside allowed list     HIGH 85
    new country for the user MEDIUM 65 (or first login after inactivity)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

from ..models import ConditionType, EvaluationResult, RuleContext, SecurityEventType, Severity
from .base import BaseRule, country_of


@dataclass(slots=True)
class GeoAnomalyConfig:
    blocked_countries: list[str] = field(default_factory=lambda: ["KP", "IR"])
    allowed_countries: list[str] | None = None      # None = every country allowed
    check_new_country: bool = True
    learning_period_days: float = 30


class GeoAnomalyRule(BaseRule):
    rule_type = "geo-anomaly"
    config_class = GeoAnomalyConfig
    ignored_options = frozenset({"max_distance_km", "check_velocity", "user_pattern_learning"})
    condition_type = ConditionType.GEO_BASED

    default_id = "geo-anomaly-default"
    default_name = "Geographic Anomaly Detection"
    default_description = "Detects logins from unusual or blocked locations"
    default_severity = Severity.HIGH
    default_tags = ("geo-anomaly", "location", "authentication")

    config: GeoAnomalyConfig

    async def evaluate(self, context: RuleContext) -> EvaluationResult:
        if context.event_type is not SecurityEventType.LOGIN_SUCCESS:
            return EvaluationResult.no_match()

        country = country_of(context.metadata)
        if not context.metadata.get("location") or not country:
            return EvaluationResult.no_match()

        if country in (self.config.blocked_countries or []):
            return EvaluationResult(
                matched=True,
                severity=Severity.CRITICAL,
                score=100,
                reason=f"Login attempt from blocked country: {country}",
                evidence={"country": country, "blockedCountries": list(self.config.blocked_countries)},
                suggested_actions=["BLOCK_IP", "INVALIDATE_SESSIONS"],
            )

        allowed = self.config.allowed_countries
        if allowed is not None and country not in allowed:
            return EvaluationResult(
                matched=True,
                severity=Severity.HIGH,
                score=85,
                reason=f"Login attempt from non-allowed country: {country}",
                evidence={"country": country, "allowedCountries": list(allowed)},
                suggested_actions=["REQUIRE_2FA", "INCREASE_MONITORING"],
            )

        if self.config.check_new_country and context.user_id:
            return self._new_country(context, country)
        return EvaluationResult.no_match()

    def _new_country(self, context: RuleContext, country: str) -> EvaluationResult:
        # Without any history there is nothing to compare against
        if not context.recent_events:
            return EvaluationResult.no_match()

        cutoff = context.timestamp - timedelta(days=self.config.learning_period_days)
        recent = [e for e in context.recent_events if e.timestamp >= cutoff]
        known = list(dict.fromkeys(c for c in (country_of(e.metadata) for e in recent) if c))

        if recent and not known:
            return EvaluationResult.no_match()

        if not recent:
            return EvaluationResult(
                matched=True,
                severity=Severity.MEDIUM,
                score=65,
                reason=(
                    f"First login after {self.config.learning_period_days} days of "
                    f"inactivity from country: {country}"
                ),
                evidence={
                    "newCountry": country,
                    "knownCountries": [],
                    "userId": context.user_id,
                    "hasRecentActivity": False,
                },
                suggested_actions=["REQUIRE_2FA"],
            )

        if country not in known:
            return EvaluationResult(
                matched=True,
                severity=Severity.MEDIUM,
                score=65,
                reason=f"First login from new country: {country}",
                evidence={
                    "newCountry": country,
                    "knownCountries": known,
                    "userId": context.user_id,
                    "hasRecentActivity": True,
                },
                suggested_actions=["REQUIRE_2FA"],
            )

        return EvaluationResult.no_match()

    def validate(self) -> bool:
        return self.config.learning_period_days > 0

    def describe(self) -> str:
        blocked = ", ".join(self.config.blocked_countries or []) or "none"
        return (
            f"Detects geographic anomalies: blocked countries ({blocked}), "
            f"non-allowed locations and new countries within "
            f"{self.config.learning_period_days} days"
        )
