"""
alerts/models.py

Wire format for security alerts posted to the webhook.

Fields are snake_case in Python and camelCase on the wire:
    {"type", "severity", "timestamp",
     "details": {"email", "userId", "ipAddress", "userAgent", "riskScore",
                 "failedAttempts", "lockedUntil", "message", "additionalInfo"}}
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

AlertSeverity = Literal["low", "medium", "high", "critical"]


class SecurityAlertType(str, Enum):
    ACCOUNT_LOCKED           = "ACCOUNT_LOCKED"
    SUSPICIOUS_LOGIN         = "SUSPICIOUS_LOGIN"
    BRUTE_FORCE_ATTEMPT      = "BRUTE_FORCE_ATTEMPT"
    MULTIPLE_FAILED_ATTEMPTS = "MULTIPLE_FAILED_ATTEMPTS"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AlertDetails(_CamelModel):
    message: str
    email: str | None = None
    user_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    risk_score: int | None = None
    failed_attempts: int | None = None
    locked_until: datetime | None = None
    additional_info: dict[str, Any] | None = None


class SecurityAlertPayload(_CamelModel):
    type: SecurityAlertType
    severity: AlertSeverity
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    details: AlertDetails

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys; unset optional details are dropped."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
