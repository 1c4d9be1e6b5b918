"""
tests/test_session_hijacking.py

Tests for SessionHijackingRule — IP, User-Agent and country changes
within a single session, in priority order.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from authguard.backend.engine.models import (
    HistoricalEvent,
    RuleContext,
    SecurityEventType,
    Severity,
)
from authguard.backend.engine.rules.session_hijacking import SessionHijackingRule

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
UA_FIREFOX = "Mozilla/5.0 (X11; Linux x86_64; rv:128.0) Gecko/20100101 Firefox/128.0"
UA_CURL = "curl/8.5.0"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def session_event(
    minutes_ago: float,
    ip: str = "10.0.0.1",
    session: str = "sess-1",
    user_agent: str | None = UA_FIREFOX,
    **metadata,
) -> HistoricalEvent:
    return HistoricalEvent(
        timestamp=NOW - timedelta(minutes=minutes_ago),
        event_type=SecurityEventType.SESSION_REFRESH,
        ip_address=ip,
        user_agent=user_agent,
        metadata={"sessionId": session, **metadata},
    )


def context(history: list[HistoricalEvent], session: str | None = "sess-1") -> RuleContext:
    metadata = {"sessionId": session} if session else {}
    return RuleContext(
        timestamp=NOW,
        event_type=SecurityEventType.SESSION_REFRESH,
        ip_address="10.0.0.1",
        user_id="u1",
        metadata=metadata,
        recent_events=tuple(history),
    )


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestSessionHijackingDefaults:

    def test_defaults(self):
        rule = SessionHijackingRule()
        assert rule.id == "session-hijacking-default"
        assert rule.severity is Severity.CRITICAL
        assert rule.config.max_session_ip_changes == 2
        assert rule.config.lookback_minutes == 60
        assert rule.validate()

    def test_zero_ip_changes_fails_validation(self):
        assert not SessionHijackingRule(config={"maxSessionIpChanges": 0}).validate()


class TestSessionHijackingEvaluate:

    @pytest.mark.asyncio
    async def test_requires_session_id(self):
        history = [session_event(5, "1.1.1.1"), session_event(3, "2.2.2.2"), session_event(1, "3.3.3.3")]
        result = await SessionHijackingRule().evaluate(context(history, session=None))
        assert result.matched is False

    @pytest.mark.asyncio
    async def test_single_event_no_match(self):
        result = await SessionHijackingRule().evaluate(context([session_event(5)]))
        assert result.matched is False

    @pytest.mark.asyncio
    async def test_ip_changes(self):
        history = [session_event(5, "1.1.1.1"), session_event(3, "2.2.2.2"), session_event(1, "3.3.3.3")]
        result = await SessionHijackingRule().evaluate(context(history))

        assert result.matched is True
        assert result.severity is Severity.CRITICAL
        assert result.score == 95
        assert result.evidence["totalChanges"] == 2
        assert result.evidence["ipChanges"] == ["1.1.1.1 → 2.2.2.2", "2.2.2.2 → 3.3.3.3"]
        assert result.suggested_actions == ["INVALIDATE_SESSIONS", "REQUIRE_2FA", "BLOCK_IP"]

    @pytest.mark.asyncio
    async def test_history_order_does_not_matter(self):
        history = [session_event(1, "3.3.3.3"), session_event(5, "1.1.1.1"), session_event(3, "2.2.2.2")]
        result = await SessionHijackingRule().evaluate(context(history))
        assert result.evidence["ipChanges"] == ["1.1.1.1 → 2.2.2.2", "2.2.2.2 → 3.3.3.3"]

    @pytest.mark.asyncio
    async def test_other_sessions_ignored(self):
        history = [
            session_event(5, "1.1.1.1", session="other"),
            session_event(3, "2.2.2.2", session="other"),
            session_event(1, "3.3.3.3"),
        ]
        result = await SessionHijackingRule().evaluate(context(history))
        assert result.matched is False

    @pytest.mark.asyncio
    async def test_user_agent_change(self):
        history = [session_event(5, user_agent=UA_FIREFOX), session_event(1, user_agent=UA_CURL)]
        result = await SessionHijackingRule().evaluate(context(history))

        assert result.matched is True
        assert result.severity is Severity.HIGH
        assert result.score == 90
        assert result.evidence["originalUserAgent"] == UA_FIREFOX
        assert result.evidence["newUserAgent"] == UA_CURL

    @pytest.mark.asyncio
    async def test_user_agent_from_metadata(self):
        history = [
            session_event(5, user_agent=None, userAgent=UA_FIREFOX),
            session_event(1, user_agent=None, userAgent=UA_CURL),
        ]
        result = await SessionHijackingRule().evaluate(context(history))
        assert result.score == 90

    @pytest.mark.asyncio
    async def test_ip_change_takes_priority_over_user_agent(self):
        history = [
            session_event(5, "1.1.1.1", user_agent=UA_FIREFOX),
            session_event(3, "2.2.2.2", user_agent=UA_CURL),
            session_event(1, "3.3.3.3", user_agent=UA_CURL),
        ]
        result = await SessionHijackingRule().evaluate(context(history))
        assert result.score == 95

    @pytest.mark.asyncio
    async def test_country_jump_with_coordinates(self):
        history = [
            session_event(20, "1.1.1.1", location={"lat": 52.52, "lon": 13.405, "country": "DE"}),
            session_event(10, "2.2.2.2", location={"lat": 34.0522, "lon": -118.2437, "country": "US"}),
        ]
        result = await SessionHijackingRule().evaluate(context(history))

        assert result.matched is True
        assert result.severity is Severity.HIGH
        assert result.score == 85
        assert result.evidence["distance"] == pytest.approx(9310, rel=0.01)
        assert result.evidence["timeMinutes"] == pytest.approx(10.0)
        assert [loc["country"] for loc in result.evidence["locations"]] == ["DE", "US"]

    @pytest.mark.asyncio
    async def test_country_jump_without_coordinates(self):
        history = [session_event(20, country="DE"), session_event(10, country="FR")]
        result = await SessionHijackingRule().evaluate(context(history))
        assert result.matched is True
        assert result.score == 85
        assert result.evidence["distance"] is None

    @pytest.mark.asyncio
    async def test_checks_can_be_disabled(self):
        history = [session_event(20, country="DE"), session_event(10, country="FR")]
        rule = SessionHijackingRule(config={"checkGeoJump": False})
        result = await rule.evaluate(context(history))
        assert result.matched is False

    @pytest.mark.asyncio
    async def test_stale_events_outside_lookback(self):
        history = [session_event(180, "1.1.1.1"), session_event(120, "2.2.2.2"), session_event(1, "3.3.3.3")]
        result = await SessionHijackingRule().evaluate(context(history))
        assert result.matched is False
