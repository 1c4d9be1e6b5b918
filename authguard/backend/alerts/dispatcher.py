"""
alerts/dispatcher.py

AlertDispatcher — posts SecurityAlertPayload JSON to a webhook.

Every delivery runs as
    breaker.execute(lambda: retry.execute(post))
so the breaker sees one logical attempt per alert, and the retry policy
governs the individual HTTP calls inside it.

Delivery never raises: disabled alerting, an open circuit and exhausted
retries are all logged and swallowed so the authentication path is never
affected by the alerting endpoint.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

import httpx

from ..config import Settings, settings as default_settings
from ..errors import CircuitBreakerOpenError
from ..metrics import METRICS
from ..resilience import CircuitBreaker, CircuitBreakerConfig, RetryConfig, RetryPolicy
from .models import AlertDetails, SecurityAlertPayload, SecurityAlertType

logger = logging.getLogger(__name__)

BREAKER_NAME = "SecurityAlertWebhook"


class AlertDispatcher:
    """
    Args:
        webhook_url: Target URL; None disables delivery
        auth_token:  Sent as "Authorization: Bearer <token>" when set
        enabled:     Master switch
        retry:       RetryPolicy used for each delivery
        breaker:     CircuitBreaker shared by all deliveries
        client:      httpx.AsyncClient to post with (created lazily if omitted)
    """

    def __init__(
        self,
        webhook_url: str | None = None,
        *,
        auth_token: str | None = None,
        enabled: bool = True,
        retry: RetryPolicy | None = None,
        breaker: CircuitBreaker | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.auth_token = auth_token
        self.enabled = enabled
        self.retry = retry or RetryPolicy()
        self.breaker = breaker or CircuitBreaker(BREAKER_NAME)
        self._client = client
        self._owns_client = client is None
        self._pending: set[asyncio.Task] = set()

        if self.enabled and not self.webhook_url:
            logger.warning("Security alerts are enabled but no webhook URL is configured")

    @classmethod
    def from_settings(
        cls, cfg: Settings | None = None, *, client: httpx.AsyncClient | None = None,
    ) -> AlertDispatcher:
        cfg = cfg or default_settings
        retry = RetryPolicy(RetryConfig(
            max_retries=cfg.ALERT_MAX_RETRIES,
            base_delay=cfg.ALERT_BASE_DELAY_SECONDS,
            max_delay=cfg.ALERT_MAX_DELAY_SECONDS,
            backoff_multiplier=cfg.ALERT_BACKOFF_MULTIPLIER,
            jitter_factor=cfg.ALERT_JITTER_FACTOR,
            timeout=cfg.ALERT_TIMEOUT_SECONDS,
        ))
        breaker = CircuitBreaker(BREAKER_NAME, CircuitBreakerConfig(
            failure_threshold=cfg.BREAKER_FAILURE_THRESHOLD,
            failure_count_window=cfg.BREAKER_FAILURE_WINDOW_SECONDS,
            open_state_duration=cfg.BREAKER_OPEN_DURATION_SECONDS,
            success_threshold=cfg.BREAKER_SUCCESS_THRESHOLD,
            failure_rate_threshold=cfg.BREAKER_FAILURE_RATE_THRESHOLD,
            minimum_number_of_calls=cfg.BREAKER_MINIMUM_CALLS,
        ))
        return cls(
            cfg.ALERT_WEBHOOK_URL,
            auth_token=cfg.ALERT_AUTH_TOKEN,
            enabled=cfg.ALERTS_ENABLED,
            retry=retry,
            breaker=breaker,
            client=client,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def send_alert(self, payload: SecurityAlertPayload) -> bool:
        """Deliver *payload*. Returns True on success; never raises."""
        if not self.enabled or not self.webhook_url:
            METRICS.alerts_skipped.inc()
            logger.debug(
                "Security alert not sent (enabled: %s, webhook: %s)",
                self.enabled, bool(self.webhook_url),
            )
            return False

        body = payload.to_wire()
        label = f"SecurityAlert-{payload.type.value}"

        async def post() -> httpx.Response:
            response = await self._http().post(self.webhook_url, json=body, headers=self._headers())
            response.raise_for_status()
            return response

        try:
            await self.breaker.execute(lambda: self.retry.execute(post, label))
        except CircuitBreakerOpenError:
            METRICS.alerts_circuit_open.inc()
            logger.warning(
                "Circuit breaker prevented alert delivery for %s — alert dropped",
                payload.type.value,
            )
            return False
        except Exception as exc:
            METRICS.alerts_failed.inc()
            logger.error("Failed to send security alert after retries: %s", exc)
            return False

        METRICS.alerts_sent.inc()
        logger.info(
            "Security alert sent: %s for %s",
            payload.type.value, payload.details.email or payload.details.ip_address or "unknown",
        )
        return True

    def send_alert_nowait(self, payload: SecurityAlertPayload) -> asyncio.Task | None:
        """Schedule delivery in the background. Returns the task, or None without a loop."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop — alert %s dropped", payload.type.value)
            return None
        task = loop.create_task(self.send_alert(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for every background delivery scheduled so far."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel background deliveries and close the HTTP client if we own it."""
        tasks = list(self._pending)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d pending alert deliveries", len(tasks))
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Convenience senders
    # ------------------------------------------------------------------

    async def send_account_locked_alert(
        self,
        email: str,
        user_id: str | None,
        locked_until: datetime,
        failed_attempts: int,
        ip_address: str | None = None,
    ) -> bool:
        return await self.send_alert(SecurityAlertPayload(
            type=SecurityAlertType.ACCOUNT_LOCKED,
            severity="high",
            details=AlertDetails(
                email=email,
                user_id=user_id,
                ip_address=ip_address,
                locked_until=locked_until,
                failed_attempts=failed_attempts,
                message=(
                    f"Account {email} has been locked until {locked_until.isoformat()} "
                    f"after {failed_attempts} failed login attempts"
                ),
            ),
        ))

    async def send_suspicious_login_alert(
        self,
        email: str,
        user_id: str | None,
        ip_address: str,
        user_agent: str,
        risk_score: int,
        reason: str,
    ) -> bool:
        return await self.send_alert(SecurityAlertPayload(
            type=SecurityAlertType.SUSPICIOUS_LOGIN,
            severity="critical" if risk_score >= 80 else "high",
            details=AlertDetails(
                email=email,
                user_id=user_id,
                ip_address=ip_address,
                user_agent=user_agent,
                risk_score=risk_score,
                message=(
                    f"Suspicious login attempt detected for {email} with risk score "
                    f"{risk_score}. Reason: {reason}"
                ),
            ),
        ))

    async def send_brute_force_alert(
        self, ip_address: str, attempt_count: int, time_window_minutes: float,
    ) -> bool:
        return await self.send_alert(SecurityAlertPayload(
            type=SecurityAlertType.BRUTE_FORCE_ATTEMPT,
            severity="critical",
            details=AlertDetails(
                ip_address=ip_address,
                message=(
                    f"Potential brute force attack detected from IP {ip_address}. "
                    f"{attempt_count} attempts in {time_window_minutes} minutes"
                ),
                additional_info={
                    "attemptCount": attempt_count,
                    "timeWindowMinutes": time_window_minutes,
                },
            ),
        ))

    async def send_multiple_failed_attempts_alert(
        self,
        email: str,
        user_id: str | None,
        failed_attempts: int,
        remaining_attempts: int,
        ip_address: str | None = None,
    ) -> bool:
        return await self.send_alert(SecurityAlertPayload(
            type=SecurityAlertType.MULTIPLE_FAILED_ATTEMPTS,
            severity="high" if remaining_attempts <= 1 else "medium",
            details=AlertDetails(
                email=email,
                user_id=user_id,
                ip_address=ip_address,
                failed_attempts=failed_attempts,
                message=(
                    f"Multiple failed login attempts for {email}. {failed_attempts} failed "
                    f"attempts, {remaining_attempts} attempts remaining before lockout"
                ),
                additional_info={"remainingAttempts": remaining_attempts},
            ),
        ))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.retry.config.timeout)
            self._owns_client = True
        return self._client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers
