"""
engine/actions.py

ActionDispatcher — turns a rule's suggested action names into domain events
on the EventBus. Enforcement (blocking, session revocation …) is left to
whoever subscribes to those events.

Unknown action names are dropped with a debug log.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from ..metrics import METRICS
from .events import EventBus
from .models import RuleContext

logger = logging.getLogger(__name__)

PayloadBuilder = Callable[[RuleContext], dict[str, Any]]


def _block_ip(ctx: RuleContext) -> dict[str, Any]:
    return {"ipAddress": ctx.ip_address, "reason": "Threat detection rule"}


def _require_2fa(ctx: RuleContext) -> dict[str, Any]:
    return {"userId": ctx.user_id, "email": ctx.email}


def _invalidate_sessions(ctx: RuleContext) -> dict[str, Any]:
    return {"userId": ctx.user_id}


def _increase_monitoring(ctx: RuleContext) -> dict[str, Any]:
    return {"userId": ctx.user_id, "ipAddress": ctx.ip_address}


BUILTIN_ACTIONS: dict[str, tuple[str, PayloadBuilder]] = {
    "BLOCK_IP":            ("security.block.ip", _block_ip),
    "REQUIRE_2FA":         ("security.require.2fa", _require_2fa),
    "INVALIDATE_SESSIONS": ("security.invalidate.sessions", _invalidate_sessions),
    "INCREASE_MONITORING": ("security.increase.monitoring", _increase_monitoring),
}


class ActionDispatcher:
    def __init__(self, event_bus: EventBus) -> None:
        self.event_bus = event_bus
        self._actions: dict[str, tuple[str, PayloadBuilder]] = dict(BUILTIN_ACTIONS)

    def register_action(self, name: str, event: str, builder: PayloadBuilder) -> None:
        """Add (or replace) an action at runtime."""
        self._actions[name] = (event, builder)
        logger.info("Registered action %r -> %r", name, event)

    def is_known(self, name: str) -> bool:
        return name in self._actions

    @property
    def known_actions(self) -> list[str]:
        return sorted(self._actions)

    def dispatch(self, action: str, context: RuleContext) -> bool:
        """Emit the event for *action*. Returns False for unknown names."""
        entry = self._actions.get(action)
        if entry is None:
            METRICS.actions_ignored.inc()
            logger.debug("Ignoring unknown action %r", action)
            return False

        event, builder = entry
        payload = builder(context)
        payload["context"] = context
        self.event_bus.emit(event, payload)
        METRICS.actions_dispatched.inc()
        logger.info("Action %s dispatched as %r", action, event)
        return True

    def dispatch_all(self, actions: list[str], context: RuleContext) -> int:
        """Dispatch each action in order; returns how many were known."""
        return sum(1 for action in actions if self.dispatch(action, context))
