"""
engine/rules/account_enumeration.py

AccountEnumerationRule — one address probing for valid accounts, visible as
sequential usernames (user1, user2, user3) or a run of near-identical ones.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from ..models import ConditionType, EvaluationResult, RuleContext, SecurityEventType, Severity
from .base import BaseRule, chronological, of_type, within_window

_NUMBER = re.compile(r"\d+")


@dataclass(slots=True)
class AccountEnumerationConfig:
    lookback_minutes: float = 15
    min_attempts: int = 5
    sequential_threshold: int = 3
    similarity_threshold: float = 0.8


class AccountEnumerationRule(BaseRule):
    rule_type = "account-enumeration"
    config_class = AccountEnumerationConfig
    ignored_options = frozenset({"patterns", "match_type"})
    condition_type = ConditionType.PATTERN

    default_id = "account-enumeration-default"
    default_name = "Account Enumeration Detection"
    default_description = "Detects attempts to enumerate valid user accounts"
    default_severity = Severity.HIGH
    default_tags = ("account-enumeration", "reconnaissance", "authentication")

    config: AccountEnumerationConfig

    async def evaluate(self, context: RuleContext) -> EvaluationResult:
        if not context.ip_address:
            return EvaluationResult.no_match()

        failures = chronological(
            e for e in of_type(
                within_window(context, self.config.lookback_minutes),
                SecurityEventType.LOGIN_FAILED,
            )
            if e.ip_address == context.ip_address
        )
        if len(failures) < self.config.min_attempts:
            return EvaluationResult.no_match()

        usernames = [
            name for name in (
                e.metadata.get("email") or e.metadata.get("username") for e in failures
            ) if name
        ]

        sequential = sequential_count(usernames)
        if sequential >= self.config.sequential_threshold:
            return EvaluationResult(
                matched=True,
                severity=Severity.HIGH,
                score=85,
                reason=(
                    "Account enumeration detected: Sequential username pattern "
                    f"from IP {context.ip_address}"
                ),
                evidence={
                    "ipAddress": context.ip_address,
                    "attemptCount": len(failures),
                    "sequentialCount": sequential,
                    "sampleUsernames": usernames[:5],
                },
                suggested_actions=["BLOCK_IP", "INCREASE_MONITORING"],
            )

        similarity = mean_similarity(usernames)
        if similarity >= self.config.similarity_threshold:
            return EvaluationResult(
                matched=True,
                severity=Severity.HIGH,
                score=80,
                reason=(
                    "Account enumeration detected: Similar username patterns "
                    f"from IP {context.ip_address}"
                ),
                evidence={
                    "ipAddress": context.ip_address,
                    "attemptCount": len(failures),
                    "similarityScore": round(similarity, 3),
                    "sampleUsernames": usernames[:5],
                },
                suggested_actions=["BLOCK_IP", "INCREASE_MONITORING"],
            )

        return EvaluationResult.no_match()

    def validate(self) -> bool:
        return (
            self.config.lookback_minutes > 0
            and self.config.min_attempts > 0
            and self.config.sequential_threshold > 0
            and 0 < self.config.similarity_threshold <= 1
        )

    def describe(self) -> str:
        return (
            "Detects account enumeration attempts through sequential or similar "
            f"username patterns ({self.config.min_attempts}+ failures within "
            f"{self.config.lookback_minutes} minutes)"
        )


# ---------------------------------------------------------------------------
# String helpers
# ---------------------------------------------------------------------------

def sequential_count(usernames: list[str]) -> int:
    """Number of neighbours where only the first number went up by one."""
    count = 0
    for prev, curr in zip(usernames, usernames[1:]):
        prev_num, curr_num = _NUMBER.search(prev), _NUMBER.search(curr)
        if not prev_num or not curr_num:
            continue
        if (
            int(curr_num.group()) == int(prev_num.group()) + 1
            and _NUMBER.sub("", prev, count=1) == _NUMBER.sub("", curr, count=1)
        ):
            count += 1
    return count


def levenshtein(a: str, b: str) -> int:
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """1.0 for identical strings, 0.0 for nothing in common."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return (longest - levenshtein(a, b)) / longest


def mean_similarity(usernames: list[str]) -> float:
    if len(usernames) < 2:
        return 0.0
    scores = [
        similarity(usernames[i], usernames[j])
        for i in range(len(usernames) - 1)
        for j in range(i + 1, len(usernames))
    ]
    return sum(scores) / len(scores)
