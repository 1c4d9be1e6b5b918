"""
backend/errors.py

Exception hierarchy shared by the engine, rule factory and resilience layer.

Only configuration and programmer errors are raised to callers. Rule
evaluation failures and alert delivery failures are recovered at their own
boundary and never reach the authentication path.
"""

from __future__ import annotations


class AuthGuardError(Exception):
    """Base class for all errors raised by authguard."""


class InvalidConfigurationError(AuthGuardError):
    """A rule failed validation or was built from an unusable config."""


class UnknownRuleTypeError(AuthGuardError):
    """The rule factory was asked for a type it does not know."""

    def __init__(self, rule_type: str, known: list[str] | None = None) -> None:
        self.rule_type = rule_type
        self.known = sorted(known or [])
        hint = f" (known: {', '.join(self.known)})" if self.known else ""
        super().__init__(f"Unknown rule type: {rule_type!r}{hint}")


class CircuitBreakerOpenError(AuthGuardError):
    """Raised instead of calling a dependency whose breaker is open."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Circuit breaker is OPEN for {name}")
