"""
engine/rules/time_anomaly.py

TimeAnomalyRule — logins at unusual local times.

Hours and days are taken in the configured timezone. Naive timestamps are
treated as already being local time. Days follow the 0 = Sunday convention.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..models import ConditionType, EvaluationResult, RuleContext, SecurityEventType, Severity
from .base import BaseRule, of_type


def _default_suspicious_hours() -> dict[str, int]:
    return {"start": 0, "end": 6}


@dataclass(slots=True)
class TimeAnomalyConfig:
    allowed_hours: dict[str, int] | None = None     # {"start": 8, "end": 18}
    allowed_days: list[int] | None = None           # 0 = Sunday … 6 = Saturday
    timezone: str = "Europe/Berlin"
    check_user_pattern: bool = True
    pattern_learning_days: float = 30
    suspicious_hours: dict[str, int] = field(default_factory=_default_suspicious_hours)


def _in_range(hour: int, start: int, end: int) -> bool:
    """start <= hour < end, wrapping past midnight when end < start."""
    if end >= start:
        return start <= hour < end
    return hour >= start or hour < end


class TimeAnomalyRule(BaseRule):
    rule_type = "time-anomaly"
    config_class = TimeAnomalyConfig
    condition_type = ConditionType.TIME_BASED

    default_id = "time-anomaly-default"
    default_name = "Time-based Anomaly Detection"
    default_description = "Detects logins at unusual times or outside business hours"
    default_severity = Severity.MEDIUM
    default_tags = ("time-anomaly", "business-hours", "authentication")

    config: TimeAnomalyConfig

    def _local(self, moment: datetime) -> datetime:
        if moment.tzinfo is None:
            return moment
        return moment.astimezone(ZoneInfo(self.config.timezone))

    async def evaluate(self, context: RuleContext) -> EvaluationResult:
        if context.event_type is not SecurityEventType.LOGIN_SUCCESS:
            return EvaluationResult.no_match()

        local = self._local(context.timestamp)
        hour = local.hour
        day = (local.weekday() + 1) % 7

        allowed_hours = self.config.allowed_hours
        if allowed_hours:
            start, end = allowed_hours["start"], allowed_hours["end"]
            if not _in_range(hour, start, end):
                return EvaluationResult(
                    matched=True,
                    severity=Severity.HIGH,
                    score=80,
                    reason=f"Login outside allowed hours ({start}:00-{end}:00)",
                    evidence={"hour": hour, "allowedHours": dict(allowed_hours)},
                    suggested_actions=["REQUIRE_2FA", "INCREASE_MONITORING"],
                )

        allowed_days = self.config.allowed_days
        if allowed_days is not None and day not in allowed_days:
            return EvaluationResult(
                matched=True,
                severity=Severity.MEDIUM,
                score=70,
                reason="Login on non-business day",
                evidence={"day": day, "allowedDays": list(allowed_days)},
                suggested_actions=["REQUIRE_2FA"],
            )

        suspicious = self.config.suspicious_hours
        if not _in_range(hour, suspicious["start"], suspicious["end"]):
            return EvaluationResult.no_match()

        if self.config.check_user_pattern and context.user_id:
            if hour in self._known_hours(context):
                return EvaluationResult.no_match()
            return EvaluationResult(
                matched=True,
                severity=Severity.MEDIUM,
                score=60,
                reason=f"Login at unusual hour for this user: {hour}:00",
                evidence={
                    "hour": hour,
                    "suspiciousHours": dict(suspicious),
                    "userId": context.user_id,
                },
                suggested_actions=["REQUIRE_2FA"],
            )

        return EvaluationResult(
            matched=True,
            severity=Severity.LOW,
            score=50,
            reason=f"Login during suspicious hours ({hour}:00)",
            evidence={"hour": hour, "suspiciousHours": dict(suspicious)},
            suggested_actions=["INCREASE_MONITORING"],
        )

    def _known_hours(self, context: RuleContext) -> set[int]:
        cutoff = context.timestamp - timedelta(days=self.config.pattern_learning_days)
        return {
            self._local(e.timestamp).hour
            for e in of_type(context.recent_events, SecurityEventType.LOGIN_SUCCESS)
            if e.timestamp >= cutoff
        }

    def validate(self) -> bool:
        cfg = self.config
        try:
            ZoneInfo(cfg.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            return False

        def hours_ok(window: dict[str, int] | None) -> bool:
            if window is None:
                return True
            return all(0 <= window.get(k, -1) <= 23 for k in ("start", "end"))

        return (
            cfg.pattern_learning_days > 0
            and hours_ok(cfg.suspicious_hours)
            and hours_ok(cfg.allowed_hours)
            and all(0 <= d <= 6 for d in cfg.allowed_days or [])
        )

    def describe(self) -> str:
        parts = []
        if self.config.allowed_hours:
            h = self.config.allowed_hours
            parts.append(f"logins outside {h['start']}:00-{h['end']}:00")
        if self.config.allowed_days is not None:
            parts.append("logins on non-business days")
        s = self.config.suspicious_hours
        parts.append(f"logins between {s['start']}:00 and {s['end']}:00")
        return f"Detects time-based anomalies ({self.config.timezone}): " + ", ".join(parts)
