"""
backend/config.py

Application configuration via Pydantic Settings.
All values can be overridden with environment variables or a .env file.

Quick start — create a .env file in your project root:
    ALERTS_ENABLED=true
    ALERT_WEBHOOK_URL=https://hooks.example.com/security
    ALERT_AUTH_TOKEN=change-me
    DISABLED_RULES=time-anomaly-default
"""

from __future__ import annotations

import json
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Alert webhook
    ALERTS_ENABLED: bool = False
    ALERT_WEBHOOK_URL: str | None = None
    ALERT_AUTH_TOKEN: str | None = None
    ALERT_BACKGROUND_DELIVERY: bool = True    # False awaits each alert inside evaluate_rules

    # Retry (durations in seconds)
    ALERT_MAX_RETRIES: int = 3
    ALERT_BASE_DELAY_SECONDS: float = 1.0
    ALERT_MAX_DELAY_SECONDS: float = 30.0
    ALERT_BACKOFF_MULTIPLIER: float = 2.0
    ALERT_JITTER_FACTOR: float = 0.1
    ALERT_TIMEOUT_SECONDS: float = 5.0

    # Circuit breaker guarding the webhook
    BREAKER_FAILURE_THRESHOLD: int = 5
    BREAKER_FAILURE_WINDOW_SECONDS: float = 60.0
    BREAKER_OPEN_DURATION_SECONDS: float = 30.0
    BREAKER_SUCCESS_THRESHOLD: int = 3
    BREAKER_FAILURE_RATE_THRESHOLD: float = 50.0   # percent
    BREAKER_MINIMUM_CALLS: int = 5

    # Rules
    RULES_FILE: str | None = None
    DISABLED_RULES: Annotated[list[str], NoDecode] = []

    # Logging
    LOG_LEVEL: str = "INFO"

    @field_validator("DISABLED_RULES", mode="before")
    @classmethod
    def parse_disabled_rules(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            return [rule_id.strip() for rule_id in v.split(",") if rule_id.strip()]
        return v

    @field_validator("ALERT_MAX_RETRIES")
    @classmethod
    def check_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("ALERT_MAX_RETRIES must be >= 0")
        return v

    @field_validator("ALERT_JITTER_FACTOR")
    @classmethod
    def check_jitter(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("ALERT_JITTER_FACTOR must be between 0 and 1")
        return v


settings = Settings()
