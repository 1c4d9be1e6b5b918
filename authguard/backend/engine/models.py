"""
engine/models.py

Data models for the threat detection engine.

Severity          — 4-level ordinal enum used by rules, results and alerts
RuleStatus        — lifecycle state of a registered rule
ConditionType     — rule family (threshold / pattern / geo / time)
SecurityEventType — kinds of authentication events fed to the engine
HistoricalEvent   — one past event from the caller-supplied history
RuleContext       — the event under evaluation plus its history
EvaluationResult  — returned by every rule's evaluate() call
RuleExecutionStats — per-rule counters kept by the engine
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Severity(str, Enum):
    LOW      = "LOW"
    MEDIUM   = "MEDIUM"
    HIGH     = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def escalate(self) -> Severity:
        """One step more severe, saturating at CRITICAL."""
        return _SEVERITY_ORDER[min(self.rank + 1, len(_SEVERITY_ORDER) - 1)]

    def at_least(self, other: Severity) -> bool:
        return self.rank >= other.rank

    @classmethod
    def highest(cls, severities: Iterable[Severity]) -> Severity:
        return max(severities, key=lambda s: s.rank, default=cls.LOW)


_SEVERITY_ORDER: tuple[Severity, ...] = (
    Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL,
)
_SEVERITY_RANK: dict[Severity, int] = {s: i for i, s in enumerate(_SEVERITY_ORDER)}


class RuleStatus(str, Enum):
    ACTIVE     = "ACTIVE"
    INACTIVE   = "INACTIVE"
    TESTING    = "TESTING"
    DEPRECATED = "DEPRECATED"


class ConditionType(str, Enum):
    THRESHOLD  = "THRESHOLD"
    PATTERN    = "PATTERN"
    GEO_BASED  = "GEO_BASED"
    TIME_BASED = "TIME_BASED"


class SecurityEventType(str, Enum):
    LOGIN_SUCCESS       = "LOGIN_SUCCESS"
    LOGIN_FAILED        = "LOGIN_FAILED"
    LOGOUT              = "LOGOUT"
    PASSWORD_CHANGED    = "PASSWORD_CHANGED"
    ACCOUNT_LOCKED      = "ACCOUNT_LOCKED"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    SESSION_REFRESH     = "SESSION_REFRESH"


# ---------------------------------------------------------------------------
# Input — context and history
# ---------------------------------------------------------------------------

def _freeze(metadata: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(metadata or {}))


def _parse_timestamp(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        return raw
    if isinstance(raw, (int, float)):
        return datetime.fromtimestamp(raw, tz=timezone.utc)
    if isinstance(raw, str):
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    raise ValueError(f"unsupported timestamp: {raw!r}")


def _as_utc(moment: datetime) -> datetime:
    return moment.replace(tzinfo=timezone.utc) if moment.tzinfo is None else moment


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


@dataclass(frozen=True, slots=True)
class HistoricalEvent:
    """One past security event handed in by the caller."""

    timestamp: datetime
    event_type: SecurityEventType
    ip_address: str | None = None
    user_agent: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", _freeze(self.metadata))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> HistoricalEvent:
        return cls(
            timestamp=_parse_timestamp(data["timestamp"]),
            event_type=SecurityEventType(_pick(data, "event_type", "eventType")),
            ip_address=_pick(data, "ip_address", "ipAddress"),
            user_agent=_pick(data, "user_agent", "userAgent"),
            metadata=data.get("metadata") or {},
        )


@dataclass(frozen=True, slots=True)
class RuleContext:
    """
    Everything a rule may look at for one evaluation pass.

    Immutable: metadata is wrapped in a read-only mapping and the history is
    stored as a tuple, so rules evaluated concurrently cannot interfere.
    When naive and timezone-aware timestamps are mixed, the naive ones are
    taken to be UTC so that history windows can still be compared.
    """

    timestamp: datetime
    event_type: SecurityEventType
    ip_address: str | None = None
    user_agent: str | None = None
    user_id: str | None = None
    email: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    recent_events: tuple[HistoricalEvent, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", _freeze(self.metadata))
        object.__setattr__(self, "recent_events", tuple(self.recent_events))
        stamps = [self.timestamp, *(e.timestamp for e in self.recent_events)]
        naive = [t.tzinfo is None for t in stamps]
        if any(naive) and not all(naive):
            object.__setattr__(self, "timestamp", _as_utc(self.timestamp))
            object.__setattr__(self, "recent_events", tuple(
                replace(e, timestamp=_as_utc(e.timestamp)) if e.timestamp.tzinfo is None else e
                for e in self.recent_events
            ))

    @property
    def session_id(self) -> str | None:
        return self.metadata.get("sessionId")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RuleContext:
        """Build a context from a JSON-style dict (camelCase keys accepted)."""
        recent = _pick(data, "recent_events", "recentEvents") or []
        return cls(
            timestamp=_parse_timestamp(data["timestamp"]),
            event_type=SecurityEventType(_pick(data, "event_type", "eventType")),
            ip_address=_pick(data, "ip_address", "ipAddress"),
            user_agent=_pick(data, "user_agent", "userAgent"),
            user_id=_pick(data, "user_id", "userId"),
            email=data.get("email"),
            metadata=data.get("metadata") or {},
            recent_events=tuple(
                e if isinstance(e, HistoricalEvent) else HistoricalEvent.from_dict(e)
                for e in recent
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly summary (history is reduced to a count)."""
        return {
            "userId": self.user_id,
            "email": self.email,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "timestamp": self.timestamp.isoformat(),
            "eventType": self.event_type.value,
            "metadata": dict(self.metadata),
            "recentEventCount": len(self.recent_events),
        }


# ---------------------------------------------------------------------------
# Output — EvaluationResult
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class EvaluationResult:
    """
    Return value of BaseRule.evaluate().

    A non-match carries nothing but matched=False: severity, score, reason,
    evidence and actions must all be None. This is enforced here so a rule
    cannot leak evidence for events it did not flag.
    """

    matched: bool
    severity: Severity | None = None
    score: int | None = None        # 0 … 100
    reason: str | None = None
    evidence: dict[str, Any] | None = None
    suggested_actions: list[str] | None = None

    # Filled in by the engine once the result is attributed to a rule
    rule_id: str | None = None
    rule_name: str | None = None
    tags: list[str] | None = None

    def __post_init__(self) -> None:
        if self.matched:
            if self.severity is None or self.score is None:
                raise ValueError("a matched result needs a severity and a score")
            self.score = max(0, min(100, int(self.score)))
            if self.evidence is None:
                self.evidence = {}
            if self.suggested_actions is None:
                self.suggested_actions = []
            return
        populated = [
            name for name in (
                "severity", "score", "reason", "evidence", "suggested_actions",
                "rule_id", "rule_name", "tags",
            )
            if getattr(self, name) is not None
        ]
        if populated:
            raise ValueError(f"non-matching result must not carry {populated}")

    @classmethod
    def no_match(cls) -> EvaluationResult:
        return cls(matched=False)

    def to_dict(self) -> dict[str, Any]:
        if not self.matched:
            return {"matched": False}
        out: dict[str, Any] = {
            "matched": True,
            "severity": self.severity.value if self.severity else None,
            "score": self.score,
            "reason": self.reason,
            "evidence": self.evidence,
            "suggestedActions": list(self.suggested_actions or []),
        }
        if self.rule_id is not None:
            out["ruleId"] = self.rule_id
            out["ruleName"] = self.rule_name
            out["tags"] = list(self.tags or [])
        return out

    def __repr__(self) -> str:
        if not self.matched:
            return "EvaluationResult(matched=False)"
        return (
            f"EvaluationResult(matched=True {self.severity.value if self.severity else '?'} "
            f"score={self.score} rule={self.rule_id!r})"
        )


def combine_results(results: list[EvaluationResult]) -> EvaluationResult:
    """
    Merge several matched results into one.

    Highest severity wins, scores are averaged, reasons joined with "; ",
    actions de-duplicated in first-seen order, evidence kept per pattern.
    """
    if not results:
        return EvaluationResult.no_match()
    scores = [r.score for r in results if r.score is not None]
    actions: dict[str, None] = {}
    for r in results:
        for action in r.suggested_actions or []:
            actions.setdefault(action, None)
    return EvaluationResult(
        matched=True,
        severity=Severity.highest(r.severity for r in results if r.severity),
        score=round(sum(scores) / len(scores)) if scores else 0,
        reason="; ".join(r.reason for r in results if r.reason),
        evidence={
            "combinedPatterns": len(results),
            "patterns": [r.evidence for r in results],
        },
        suggested_actions=list(actions),
    )


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class RuleExecutionStats:
    executions: int = 0
    matches: int = 0
    total_execution_time_ms: float = 0.0
    last_executed_at: datetime | None = None

    @property
    def average_execution_time_ms(self) -> float:
        return self.total_execution_time_ms / self.executions if self.executions else 0.0

    def copy(self) -> RuleExecutionStats:
        return RuleExecutionStats(
            executions=self.executions,
            matches=self.matches,
            total_execution_time_ms=self.total_execution_time_ms,
            last_executed_at=self.last_executed_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "executions": self.executions,
            "matches": self.matches,
            "total_execution_time_ms": round(self.total_execution_time_ms, 3),
            "average_execution_time_ms": round(self.average_execution_time_ms, 3),
            "last_executed_at": (
                self.last_executed_at.isoformat() if self.last_executed_at else None
            ),
        }
