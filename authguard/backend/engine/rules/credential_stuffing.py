"""
engine/rules/credential_stuffing.py

CredentialStuffingRule — one address trying many different accounts.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..models import ConditionType, EvaluationResult, RuleContext, SecurityEventType, Severity
from .base import BaseRule, chronological, of_type, within_window


@dataclass(slots=True)
class CredentialStuffingConfig:
    lookback_minutes: float = 10
    min_unique_users: int = 5
    max_time_between_attempts_ms: float = 2000


class CredentialStuffingRule(BaseRule):
    rule_type = "credential-stuffing"
    config_class = CredentialStuffingConfig
    config_aliases = {"max_time_between_attempts": "max_time_between_attempts_ms"}
    ignored_options = frozenset({"patterns", "match_type", "suspicious_user_agents"})
    condition_type = ConditionType.PATTERN

    default_id = "credential-stuffing-default"
    default_name = "Credential Stuffing Detection"
    default_description = "Detects credential stuffing attacks from a single source"
    default_severity = Severity.CRITICAL
    default_tags = ("credential-stuffing", "bot", "authentication")

    config: CredentialStuffingConfig

    async def evaluate(self, context: RuleContext) -> EvaluationResult:
        if not context.ip_address:
            return EvaluationResult.no_match()

        attempts = chronological(
            e for e in of_type(
                within_window(context, self.config.lookback_minutes),
                SecurityEventType.LOGIN_FAILED,
                SecurityEventType.LOGIN_SUCCESS,
            )
            if e.ip_address == context.ip_address
        )
        users = list(dict.fromkeys(
            e.metadata["email"] for e in attempts if e.metadata.get("email")
        ))
        if len(users) < self.config.min_unique_users:
            return EvaluationResult.no_match()

        limit_seconds = self.config.max_time_between_attempts_ms / 1000
        rapid = sum(
            1 for prev, curr in zip(attempts, attempts[1:])
            if (curr.timestamp - prev.timestamp).total_seconds() < limit_seconds
        )
        score = min(100, len(users) / 10 * 50 + rapid / len(attempts) * 50)

        return EvaluationResult(
            matched=True,
            severity=Severity.CRITICAL,
            score=round(score),
            reason=(
                f"Credential stuffing detected: {len(users)} different users "
                f"attempted from IP {context.ip_address}"
            ),
            evidence={
                "ipAddress": context.ip_address,
                "uniqueUsers": len(users),
                "totalAttempts": len(attempts),
                "rapidSequentialAttempts": rapid,
                "usersList": users[:10],
            },
            suggested_actions=["BLOCK_IP", "INCREASE_MONITORING"],
        )

    def validate(self) -> bool:
        return (
            self.config.lookback_minutes > 0
            and self.config.min_unique_users > 0
            and self.config.max_time_between_attempts_ms > 0
        )

    def describe(self) -> str:
        return (
            f"Detects credential stuffing attacks when {self.config.min_unique_users} or more "
            f"users are attempted from the same IP within {self.config.lookback_minutes} minutes"
        )
