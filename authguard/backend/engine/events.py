"""
engine/events.py

EventBus — in-process publish/subscribe for domain events.

Events emitted by this package:
    "threat.detected"              — {context, results, timestamp}
    "security.block.ip"            — {ipAddress, reason, context}
    "security.require.2fa"         — {userId, email, context}
    "security.invalidate.sessions" — {userId, context}
    "security.increase.monitoring" — {userId, ipAddress, context}

Plain handlers run inline; coroutine handlers are scheduled as tasks on the
running loop. A failing handler is logged and never reaches the emitter.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Any]


class EventBus:
    """Named channels, each with an ordered list of handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, event: str, handler: Handler) -> None:
        if handler not in self._handlers[event]:
            self._handlers[event].append(handler)
            logger.debug("Subscribed %r to %r", handler, event)

    def unsubscribe(self, event: str, handler: Handler) -> None:
        """Remove *handler* from *event* (no-op if not present)."""
        try:
            self._handlers[event].remove(handler)
        except ValueError:
            pass

    def emit(self, event: str, payload: dict[str, Any]) -> int:
        """Deliver *payload* to every handler on *event*. Returns the handler count."""
        handlers = list(self._handlers.get(event, ()))
        for handler in handlers:
            try:
                outcome = handler(payload)
                if inspect.isawaitable(outcome):
                    self._schedule(event, outcome)
            except Exception as exc:
                logger.exception("Handler %r for %r raised: %s", handler, event, exc)
        return len(handlers)

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, ()))

    async def drain(self) -> None:
        """Wait for coroutine handlers scheduled so far (useful in tests and shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------

    def _schedule(self, event: str, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop — async handler for %r dropped", event)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        async def _guarded() -> None:
            try:
                await awaitable
            except Exception as exc:
                logger.exception("Async handler for %r raised: %s", event, exc)

        task = loop.create_task(_guarded())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
