"""
engine/engine.py

RuleEngine — owns the rule registry and runs every ACTIVE rule against a
RuleContext.

Per evaluation pass:
  1. All active rules are evaluated concurrently (asyncio.gather)
  2. Each evaluation is timed and counted; a rule that raises, or returns
     anything but an EvaluationResult, is logged and treated as a non-match
  3. Matches are annotated with rule_id / rule_name / tags
  4. If anything matched: "threat.detected" is emitted, HIGH/CRITICAL
     matches are scheduled as background alerts, and suggested actions
     are dispatched

One engine is built per process and handed to its consumers.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from ..alerts.models import AlertDetails, SecurityAlertPayload, SecurityAlertType
from ..errors import InvalidConfigurationError
from ..metrics import METRICS
from .actions import ActionDispatcher
from .events import EventBus
from .models import EvaluationResult, RuleContext, RuleExecutionStats, Severity
from .rules.base import BaseRule

if TYPE_CHECKING:
    from ..alerts.dispatcher import AlertDispatcher
    from .factory import RuleFactory

logger = logging.getLogger(__name__)

_SLOW_RULE_MS = 50.0

# First matching tag wins
_ALERT_TYPE_BY_TAG: tuple[tuple[str, SecurityAlertType], ...] = (
    ("account-lockout", SecurityAlertType.ACCOUNT_LOCKED),
    ("brute-force", SecurityAlertType.BRUTE_FORCE_ATTEMPT),
    ("credential-stuffing", SecurityAlertType.BRUTE_FORCE_ATTEMPT),
    ("account-enumeration", SecurityAlertType.MULTIPLE_FAILED_ATTEMPTS),
)


def alert_type_for(tags: list[str]) -> SecurityAlertType:
    for tag, alert_type in _ALERT_TYPE_BY_TAG:
        if tag in tags:
            return alert_type
    return SecurityAlertType.SUSPICIOUS_LOGIN


class RuleEngine:
    def __init__(
        self,
        event_bus: EventBus | None = None,
        alert_dispatcher: AlertDispatcher | None = None,
        action_dispatcher: ActionDispatcher | None = None,
        *,
        background_alerts: bool = True,
    ) -> None:
        self.event_bus = event_bus or EventBus()
        self.alert_dispatcher = alert_dispatcher
        self.action_dispatcher = action_dispatcher or ActionDispatcher(self.event_bus)
        self.background_alerts = background_alerts

        self._rules: dict[str, BaseRule] = {}
        self._stats: dict[str, RuleExecutionStats] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register_rule(self, rule: BaseRule) -> None:
        """Insert or replace *rule* by id. Raises if its config does not validate."""
        if not rule.validate():
            raise InvalidConfigurationError(
                f"Invalid rule configuration for rule: {rule.name} ({rule.id})"
            )
        with self._lock:
            self._rules[rule.id] = rule
        logger.info("Registered threat detection rule: %s (%s)", rule.name, rule.id)

    def unregister_rule(self, rule_id: str) -> None:
        with self._lock:
            removed = self._rules.pop(rule_id, None)
        if removed is not None:
            logger.info("Unregistered threat detection rule: %s", rule_id)

    def get_rule(self, rule_id: str) -> BaseRule | None:
        with self._lock:
            return self._rules.get(rule_id)

    def get_all_rules(self) -> list[BaseRule]:
        with self._lock:
            return list(self._rules.values())

    def clear(self) -> None:
        """Drop every rule and all statistics."""
        with self._lock:
            self._rules.clear()
            self._stats.clear()
        logger.info("Rule registry cleared")

    def register_defaults(
        self, factory: RuleFactory | None = None, *, disabled: list[str] | None = None,
    ) -> int:
        """Register the factory's default rule set, skipping ids in *disabled*."""
        if factory is None:
            from .factory import RuleFactory
            factory = RuleFactory()
        skip = set(disabled or [])
        count = 0
        for rule in factory.create_default_rules():
            if rule.id in skip:
                logger.info("Rule %s disabled by configuration", rule.id)
                continue
            self.register_rule(rule)
            count += 1
        return count

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    async def evaluate_rules(self, context: RuleContext) -> list[EvaluationResult]:
        METRICS.events_evaluated.inc()
        active = [rule for rule in self.get_all_rules() if rule.is_active]
        logger.debug(
            "Evaluating %d active rule(s) for event %s", len(active), context.event_type.value,
        )

        outcomes = await asyncio.gather(*(self._safe_evaluate(rule, context) for rule in active))

        matches: list[EvaluationResult] = []
        for rule, result in zip(active, outcomes):
            if not result.matched:
                continue
            result.rule_id = rule.id
            result.rule_name = rule.name
            result.tags = list(rule.tags)
            matches.append(result)
            logger.warning(
                "Rule %r matched severity=%s score=%s user=%r ip=%r — %s",
                rule.name,
                result.severity.value if result.severity else "?",
                result.score,
                context.user_id,
                context.ip_address,
                result.reason,
            )

        if matches:
            METRICS.threats_detected.inc()
            self.event_bus.emit("threat.detected", {
                "context": context,
                "results": matches,
                "timestamp": datetime.now(timezone.utc),
            })
            for result in matches:
                await self._handle_match(context, result)

        return matches

    async def _safe_evaluate(self, rule: BaseRule, context: RuleContext) -> EvaluationResult:
        t0 = time.monotonic()
        try:
            result = await rule.evaluate(context)
        except Exception as exc:
            METRICS.rule_errors.inc()
            logger.exception("Error evaluating rule %r: %s", rule.name, exc)
            result = EvaluationResult.no_match()
        if not isinstance(result, EvaluationResult):
            METRICS.rule_errors.inc()
            logger.error(
                "Rule %r returned %s instead of EvaluationResult", rule.name, type(result).__name__,
            )
            result = EvaluationResult.no_match()
        elapsed_ms = (time.monotonic() - t0) * 1000
        if elapsed_ms > _SLOW_RULE_MS:
            logger.warning("Rule %r took %.1fms", rule.name, elapsed_ms)

        METRICS.rule_executions.inc()
        if result.matched:
            METRICS.rule_matches.inc()
        with self._lock:
            stats = self._stats.setdefault(rule.id, RuleExecutionStats())
            stats.executions += 1
            if result.matched:
                stats.matches += 1
            stats.total_execution_time_ms += elapsed_ms
            stats.last_executed_at = datetime.now(timezone.utc)
        return result

    async def _handle_match(self, context: RuleContext, result: EvaluationResult) -> None:
        if self.alert_dispatcher is not None and result.severity and result.severity.at_least(Severity.HIGH):
            payload = self._build_alert(context, result)
            if self.background_alerts:
                self.alert_dispatcher.send_alert_nowait(payload)
            else:
                await self.alert_dispatcher.send_alert(payload)

        self.action_dispatcher.dispatch_all(result.suggested_actions or [], context)

    @staticmethod
    def _build_alert(context: RuleContext, result: EvaluationResult) -> SecurityAlertPayload:
        return SecurityAlertPayload(
            type=alert_type_for(result.tags or []),
            severity=result.severity.value.lower(),
            details=AlertDetails(
                email=context.email,
                user_id=context.user_id,
                ip_address=context.ip_address,
                user_agent=context.user_agent,
                risk_score=result.score,
                message=f"Threat detected: {result.rule_name}. {result.reason}",
                additional_info={
                    "ruleName": result.rule_name,
                    "ruleId": result.rule_id,
                    "score": result.score,
                    "evidence": result.evidence,
                },
            ),
        )

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_rule_stats(self, rule_id: str) -> RuleExecutionStats | None:
        with self._lock:
            stats = self._stats.get(rule_id)
            return stats.copy() if stats else None

    def get_all_rule_stats(self) -> dict[str, RuleExecutionStats]:
        with self._lock:
            return {rule_id: s.copy() for rule_id, s in self._stats.items()}

    def get_metrics(self) -> dict[str, Any]:
        with self._lock:
            total_rules = len(self._rules)
            active_rules = sum(1 for r in self._rules.values() if r.is_active)
            executions = sum(s.executions for s in self._stats.values())
            matches = sum(s.matches for s in self._stats.values())
        return {
            "total_rules": total_rules,
            "active_rules": active_rules,
            "total_executions": executions,
            "total_matches": matches,
            "match_rate": matches / executions if executions else 0.0,
        }
