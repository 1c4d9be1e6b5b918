"""
engine/rules/brute_force.py

BruteForceRule — counts failed logins inside a sliding window, both per
source address and per targeted account.

Severity comes from severity_thresholds; an account attacked from more
than three addresses is escalated one step.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..models import (
    ConditionType,
    EvaluationResult,
    HistoricalEvent,
    RuleContext,
    SecurityEventType,
    Severity,
)
from .base import BaseRule, of_type, within_window

_LEVELS = ("low", "medium", "high", "critical")


def _default_thresholds() -> dict[str, int]:
    return {"low": 3, "medium": 5, "high": 10, "critical": 20}


@dataclass(slots=True)
class BruteForceConfig:
    threshold: int = 5
    time_window_minutes: float = 15
    check_ip_based: bool = True
    check_user_based: bool = True
    severity_thresholds: dict[str, int] = field(default_factory=_default_thresholds)


class BruteForceRule(BaseRule):
    rule_type = "brute-force"
    config_class = BruteForceConfig
    ignored_options = frozenset({"count_field"})
    condition_type = ConditionType.THRESHOLD

    default_id = "brute-force-default"
    default_name = "Brute Force Detection"
    default_description = "Detects brute force attacks based on failed login attempts"
    default_severity = Severity.HIGH
    default_tags = ("brute-force", "authentication", "login")

    config: BruteForceConfig

    async def evaluate(self, context: RuleContext) -> EvaluationResult:
        if context.event_type is not SecurityEventType.LOGIN_FAILED:
            return EvaluationResult.no_match()

        failures = of_type(
            within_window(context, self.config.time_window_minutes),
            SecurityEventType.LOGIN_FAILED,
        )
        results: list[EvaluationResult] = []

        if self.config.check_ip_based and context.ip_address:
            result = self._ip_based(context, failures)
            if result.matched:
                results.append(result)

        if self.config.check_user_based and (context.user_id or context.email):
            result = self._user_based(context, failures)
            if result.matched:
                results.append(result)

        if not results:
            return EvaluationResult.no_match()
        # ties keep the IP-based result
        return max(results, key=lambda r: r.severity.rank)

    # ------------------------------------------------------------------

    def _ip_based(
        self, context: RuleContext, failures: list[HistoricalEvent],
    ) -> EvaluationResult:
        attempts = sum(1 for e in failures if e.ip_address == context.ip_address)
        if attempts < self.config.threshold:
            return EvaluationResult.no_match()

        severity = self._severity_for(attempts)
        return EvaluationResult(
            matched=True,
            severity=severity,
            score=self._score_for(attempts),
            reason=(
                f"IP {context.ip_address} has {attempts} failed login attempts "
                f"in {self.config.time_window_minutes} minutes"
            ),
            evidence={
                "ipAddress": context.ip_address,
                "failedAttempts": attempts,
                "timeWindow": self.config.time_window_minutes,
                "threshold": self.config.threshold,
            },
            suggested_actions=_ip_actions(severity),
        )

    def _user_based(
        self, context: RuleContext, failures: list[HistoricalEvent],
    ) -> EvaluationResult:
        def targets_user(event: HistoricalEvent) -> bool:
            if context.email and event.metadata.get("email") == context.email:
                return True
            return bool(context.user_id) and event.metadata.get("userId") == context.user_id

        matching = [e for e in failures if targets_user(e)]
        attempts = len(matching)
        if attempts < self.config.threshold:
            return EvaluationResult.no_match()

        ips = list(dict.fromkeys(e.ip_address for e in matching if e.ip_address))
        severity = self._severity_for(attempts)
        if len(ips) > 3:
            severity = severity.escalate()

        user = context.email or context.user_id
        return EvaluationResult(
            matched=True,
            severity=severity,
            score=self._score_for(attempts),
            reason=(
                f"User {user} has {attempts} failed login attempts from {len(ips)} "
                f"different IPs in {self.config.time_window_minutes} minutes"
            ),
            evidence={
                "user": user,
                "failedAttempts": attempts,
                "uniqueIPs": len(ips),
                "ipAddresses": ips,
                "timeWindow": self.config.time_window_minutes,
                "threshold": self.config.threshold,
            },
            suggested_actions=_user_actions(severity),
        )

    def _severity_for(self, attempts: int) -> Severity:
        levels = self.config.severity_thresholds
        if attempts >= levels["critical"]:
            return Severity.CRITICAL
        if attempts >= levels["high"]:
            return Severity.HIGH
        if attempts >= levels["medium"]:
            return Severity.MEDIUM
        return Severity.LOW

    def _score_for(self, attempts: int) -> int:
        return round(min(100, attempts / self.config.severity_thresholds["critical"] * 100))

    # ------------------------------------------------------------------

    def validate(self) -> bool:
        cfg = self.config
        levels = cfg.severity_thresholds
        if not isinstance(levels, dict) or any(k not in levels for k in _LEVELS):
            return False
        return (
            cfg.threshold > 0
            and cfg.time_window_minutes > 0
            and (cfg.check_ip_based or cfg.check_user_based)
            and levels["low"] > 0
            and levels["low"] <= levels["medium"] <= levels["high"] <= levels["critical"]
        )

    def describe(self) -> str:
        checks = []
        if self.config.check_ip_based:
            checks.append("IP-based")
        if self.config.check_user_based:
            checks.append("user-based")
        return (
            f"Detects {' and '.join(checks)} brute force attacks when at least "
            f"{self.config.threshold} failed login attempts occur within "
            f"{self.config.time_window_minutes} minutes"
        )


def _ip_actions(severity: Severity) -> list[str]:
    actions = []
    if severity is Severity.CRITICAL:
        actions.append("BLOCK_IP")
    if severity.at_least(Severity.HIGH):
        actions.append("INCREASE_MONITORING")
    return actions


def _user_actions(severity: Severity) -> list[str]:
    actions = []
    if severity.at_least(Severity.HIGH):
        actions.append("REQUIRE_2FA")
    if severity is Severity.CRITICAL:
        actions.append("INVALIDATE_SESSIONS")
    return actions
