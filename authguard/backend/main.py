"""
backend/main.py

authguard-replay — feed a JSON-lines file of security events through the
rule engine and print every threat it detects.

Each line is one event in RuleContext.from_dict() form:
    {"timestamp": "2025-01-01T12:00:00Z", "eventType": "LOGIN_SUCCESS",
     "userId": "u1", "email": "a@example.com", "ipAddress": "10.0.0.1",
     "metadata": {"location": {"lat": 52.52, "lon": 13.405, "country": "DE"}}}

Lines without "recentEvents" get the previously replayed events as their
history (disable with --no-history).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections import deque
from pathlib import Path
from typing import NoReturn, TextIO

from .alerts import AlertDispatcher
from .config import settings
from .engine import RuleContext, RuleEngine, RuleFactory, load_rule_definitions
from .engine.models import EvaluationResult, HistoricalEvent
from .errors import AuthGuardError
from .metrics import METRICS

logger = logging.getLogger("authguard.main")

_ANSI = {
    "CRITICAL": "\033[91m",
    "HIGH":     "\033[93m",
    "MEDIUM":   "\033[96m",
    "LOW":      "\033[97m",
    "RESET":    "\033[0m",
}


def _colour(severity: str, text: str) -> str:
    return f"{_ANSI.get(severity, '')}{text}{_ANSI['RESET']}"


def _print_match(line_no: int, context: RuleContext, result: EvaluationResult, out: TextIO) -> None:
    sev = result.severity.value if result.severity else "LOW"
    header = _colour(sev, f"[THREAT {sev}]")
    print(
        f"\n{header} line={line_no} rule={result.rule_id!r} score={result.score} "
        f"user={context.user_id!r} ip={context.ip_address!r}\n"
        f"  {_colour(sev, result.reason or '')}\n"
        f"  actions={', '.join(result.suggested_actions or []) or 'none'}",
        file=out,
        flush=True,
    )


def as_history(context: RuleContext) -> HistoricalEvent:
    """Replayed event → history entry, with the identity copied into metadata."""
    metadata = dict(context.metadata)
    for key, value in (
        ("userId", context.user_id),
        ("email", context.email),
        ("userAgent", context.user_agent),
    ):
        if value is not None:
            metadata.setdefault(key, value)
    return HistoricalEvent(
        timestamp=context.timestamp,
        event_type=context.event_type,
        ip_address=context.ip_address,
        user_agent=context.user_agent,
        metadata=metadata,
    )


def build_engine(rules_file: str | None, disabled: list[str], alerts: AlertDispatcher | None) -> RuleEngine:
    engine = RuleEngine(
        alert_dispatcher=alerts,
        background_alerts=settings.ALERT_BACKGROUND_DELIVERY,
    )
    factory = RuleFactory()
    if rules_file:
        for definition in load_rule_definitions(rules_file):
            rule = factory.create_from_definition(definition)
            if rule.id in disabled:
                logger.info("Rule %s disabled by configuration", rule.id)
                continue
            engine.register_rule(rule)
    else:
        engine.register_defaults(factory, disabled=disabled)
    return engine


async def replay(
    lines: TextIO,
    engine: RuleEngine,
    *,
    keep_history: bool = True,
    history_size: int = 1000,
    out: TextIO = sys.stdout,
) -> int:
    """Evaluate every event in *lines*. Returns the number of matches."""
    history: deque[HistoricalEvent] = deque(maxlen=history_size)
    total = 0

    for line_no, raw in enumerate(lines, start=1):
        raw = raw.strip()
        if not raw or raw.startswith("#"):
            continue
        try:
            data = json.loads(raw)
            if keep_history and "recentEvents" not in data and "recent_events" not in data:
                data["recent_events"] = list(history)
            context = RuleContext.from_dict(data)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Skipping line %d: %s", line_no, exc)
            continue

        for result in await engine.evaluate_rules(context):
            total += 1
            _print_match(line_no, context, result, out)

        if keep_history:
            history.append(as_history(context))

    return total


async def run(args: argparse.Namespace) -> int:
    alerts = AlertDispatcher.from_settings() if settings.ALERTS_ENABLED else None
    try:
        engine = build_engine(args.rules, settings.DISABLED_RULES, alerts)
        logger.info("Replaying %s with %d rule(s)", args.events, len(engine.get_all_rules()))
        with open(args.events, encoding="utf-8") as fh:
            matches = await replay(
                fh, engine, keep_history=not args.no_history, history_size=args.history_size,
            )
    finally:
        if alerts is not None:
            await alerts.drain()
            await alerts.aclose()

    print(json.dumps({"matches": matches, **engine.get_metrics()}, indent=2))
    logger.info("Final metrics — %s", METRICS.as_dict())
    return 0


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Replay security events through AuthGuard rules")
    parser.add_argument("events", type=Path, help="JSON-lines file of security events")
    parser.add_argument("--rules", default=settings.RULES_FILE, help="JSON rule definitions file")
    parser.add_argument("--no-history", action="store_true")
    parser.add_argument("--history-size", type=int, default=1000)
    parser.add_argument(
        "--log-level", default=settings.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> NoReturn:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    if not args.events.is_file():
        print(f"ERROR: no such file: {args.events}", file=sys.stderr)
        sys.exit(1)

    try:
        code = asyncio.run(run(args))
    except AuthGuardError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(2)
    sys.exit(code)


if __name__ == "__main__":
    main()
