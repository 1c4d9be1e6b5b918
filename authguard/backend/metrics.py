"""
backend/metrics.py

Lightweight thread-safe counters for the detection and alerting pipeline.
No external dependencies — uses Python's threading.Lock.

Usage:
    from authguard.backend.metrics import METRICS
    METRICS.rule_matches.inc()
    print(METRICS.as_dict())
"""

import threading


class Counter:
    """A thread-safe integer counter."""

    __slots__ = ("_value", "_lock")

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def inc(self, amount: int = 1) -> None:
        with self._lock:
            self._value += amount

    def reset(self) -> None:
        with self._lock:
            self._value = 0

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def __repr__(self) -> str:  # pragma: no cover
        return f"Counter({self._value})"


class Metrics:
    """Singleton holding all engine and alerting counters."""

    def __init__(self) -> None:
        # --- Rule engine ---
        self.events_evaluated: Counter = Counter()
        """Contexts passed to RuleEngine.evaluate_rules()."""

        self.rule_executions: Counter = Counter()
        self.rule_matches: Counter = Counter()

        self.rule_errors: Counter = Counter()
        """Evaluations that raised and were turned into a non-match."""

        self.threats_detected: Counter = Counter()
        """Passes that produced at least one match."""

        # --- Alert delivery ---
        self.alerts_sent: Counter = Counter()
        self.alerts_failed: Counter = Counter()

        self.alerts_skipped: Counter = Counter()
        """Alerting disabled or no webhook configured."""

        self.alerts_circuit_open: Counter = Counter()
        """Alerts rejected because the breaker was OPEN."""

        # --- Actions ---
        self.actions_dispatched: Counter = Counter()
        self.actions_ignored: Counter = Counter()

    def as_dict(self) -> dict:
        """Return all counters as a plain dict (safe for JSON serialisation)."""
        return {
            name: attr.value
            for name, attr in vars(self).items()
            if isinstance(attr, Counter)
        }

    def reset_all(self) -> None:
        """Reset every counter to zero (useful in tests)."""
        for attr in vars(self).values():
            if isinstance(attr, Counter):
                attr.reset()


# Module-level singleton — import from here everywhere
METRICS = Metrics()
