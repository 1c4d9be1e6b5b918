"""
engine/rules/session_hijacking.py

SessionHijackingRule — looks at every event carrying the same sessionId
and flags sessions that change IP address, client or country mid-way.

Checks run in priority order, the first hit wins:
    1. IP changes        CRITICAL 95
    2. User-Agent change HIGH 90
    3. Country jump      HIGH 85
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..geo import GeoPoint, distance_km
from ..models import ConditionType, EvaluationResult, HistoricalEvent, RuleContext, Severity
from .base import BaseRule, chronological, country_of, within_window


@dataclass(slots=True)
class SessionHijackingConfig:
    lookback_minutes: float = 60
    check_ip_change: bool = True
    check_user_agent_change: bool = True
    check_geo_jump: bool = True
    max_session_ip_changes: int = 2


class SessionHijackingRule(BaseRule):
    rule_type = "session-hijacking"
    config_class = SessionHijackingConfig
    ignored_options = frozenset({"patterns", "match_type"})
    condition_type = ConditionType.PATTERN

    default_id = "session-hijacking-default"
    default_name = "Session Hijacking Detection"
    default_description = "Detects potential session hijacking attempts"
    default_severity = Severity.CRITICAL
    default_tags = ("session-hijacking", "session-security", "authentication")

    config: SessionHijackingConfig

    async def evaluate(self, context: RuleContext) -> EvaluationResult:
        session_id = context.session_id
        if not session_id:
            return EvaluationResult.no_match()

        events = chronological(
            e for e in within_window(context, self.config.lookback_minutes)
            if e.metadata.get("sessionId") == session_id
        )
        if len(events) < 2:
            return EvaluationResult.no_match()

        if self.config.check_ip_change:
            count, changes = _ip_changes(events)
            if count >= self.config.max_session_ip_changes:
                return EvaluationResult(
                    matched=True,
                    severity=Severity.CRITICAL,
                    score=95,
                    reason=f"Session hijacking suspected: {count} IP changes detected in session",
                    evidence={
                        "sessionId": session_id,
                        "ipChanges": changes,
                        "totalChanges": count,
                    },
                    suggested_actions=["INVALIDATE_SESSIONS", "REQUIRE_2FA", "BLOCK_IP"],
                )

        if self.config.check_user_agent_change:
            agents = [
                ua for ua in (e.user_agent or e.metadata.get("userAgent") for e in events) if ua
            ]
            if len(set(agents)) > 1:
                return EvaluationResult(
                    matched=True,
                    severity=Severity.HIGH,
                    score=90,
                    reason="Session hijacking suspected: User-Agent changed during session",
                    evidence={
                        "sessionId": session_id,
                        "originalUserAgent": agents[0],
                        "newUserAgent": agents[-1],
                    },
                    suggested_actions=["INVALIDATE_SESSIONS", "REQUIRE_2FA"],
                )

        if self.config.check_geo_jump:
            jump = _geo_jump(events)
            if jump is not None:
                return EvaluationResult(
                    matched=True,
                    severity=Severity.HIGH,
                    score=85,
                    reason="Session hijacking suspected: Impossible geographic jump detected",
                    evidence={"sessionId": session_id, **jump},
                    suggested_actions=["INVALIDATE_SESSIONS", "REQUIRE_2FA"],
                )

        return EvaluationResult.no_match()

    def validate(self) -> bool:
        return self.config.lookback_minutes > 0 and self.config.max_session_ip_changes > 0

    def describe(self) -> str:
        checks = [
            label for enabled, label in (
                (self.config.check_ip_change, "IP changes"),
                (self.config.check_user_agent_change, "User-Agent changes"),
                (self.config.check_geo_jump, "geographic jumps"),
            ) if enabled
        ]
        return (
            f"Detects session hijacking through {', '.join(checks) or 'no checks'} "
            f"within {self.config.lookback_minutes} minutes"
        )


def _ip_changes(events: list[HistoricalEvent]) -> tuple[int, list[str]]:
    """Distinct addresses minus one, plus a 'a → b' trail of each switch."""
    seen: set[str] = set()
    changes: list[str] = []
    last: str | None = None
    for event in events:
        ip = event.ip_address
        if not ip:
            continue
        seen.add(ip)
        if last and last != ip:
            changes.append(f"{last} → {ip}")
        last = ip
    return max(len(seen) - 1, 0), changes


def _geo_jump(events: list[HistoricalEvent]) -> dict[str, Any] | None:
    """
    Country-change heuristic. The reported distance is the largest
    great-circle distance between consecutive country-changing events
    that both carry coordinates, or None when none of them do.
    """
    located = [(e, country_of(e.metadata)) for e in events]
    located = [(e, c) for e, c in located if c]
    if len({c for _, c in located}) <= 1:
        return None

    distance: float | None = None
    for (prev, prev_country), (curr, curr_country) in zip(located, located[1:]):
        if prev_country == curr_country:
            continue
        origin = GeoPoint.from_mapping(prev.metadata.get("location"))
        target = GeoPoint.from_mapping(curr.metadata.get("location"))
        if origin is None or target is None:
            continue
        hop = distance_km(origin, target)
        distance = hop if distance is None else max(distance, hop)

    minutes = (events[-1].timestamp - events[0].timestamp).total_seconds() / 60
    return {
        "locations": [
            {"country": c, "timestamp": e.timestamp.isoformat(), "ip": e.ip_address}
            for e, c in located
        ],
        "distance": round(distance) if distance is not None else None,
        "timeMinutes": round(minutes, 1),
    }
