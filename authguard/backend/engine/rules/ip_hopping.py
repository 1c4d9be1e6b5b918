"""
engine/rules/ip_hopping.py

IpHoppingRule — flags a user whose successful logins jump between addresses.

Sub-patterns (evaluated in configured order):
    rapid-ip-change  — many distinct IPs within the lookback window
    geo-impossible   — consecutive logins too far apart for the elapsed time
    proxy-pattern    — many countries / ASNs, or mostly datacenter addresses

match_type "any" returns the first matching sub-pattern; "all" requires
every configured sub-pattern to match and combines their results.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..geo import GeoPoint, distance_km
from ..models import (
    ConditionType,
    EvaluationResult,
    HistoricalEvent,
    RuleContext,
    SecurityEventType,
    Severity,
    combine_results,
)
from .base import BaseRule, chronological, country_of, of_type, within_window

logger = logging.getLogger(__name__)

IP_HOPPING_PATTERNS = ("rapid-ip-change", "geo-impossible", "proxy-pattern")
MATCH_TYPES = ("any", "all")

_MIN_TIME_GAP_HOURS = 1 / 3600


@dataclass(slots=True)
class IpHoppingConfig:
    patterns: list[str] = field(default_factory=lambda: list(IP_HOPPING_PATTERNS))
    match_type: str = "any"
    lookback_minutes: float = 30
    max_ips_threshold: int = 3
    suspicious_ip_change_minutes: float = 5
    vpn_detection: bool = True
    geo_velocity_check: bool = True
    max_velocity_km_per_hour: float = 1000


class IpHoppingRule(BaseRule):
    rule_type = "ip-hopping"
    config_class = IpHoppingConfig
    condition_type = ConditionType.PATTERN

    default_id = "ip-hopping-default"
    default_name = "IP Hopping Detection"
    default_description = "Detects suspicious IP address changes and hopping patterns"
    default_severity = Severity.HIGH
    default_tags = ("ip-hopping", "proxy", "vpn", "authentication")

    config: IpHoppingConfig

    async def evaluate(self, context: RuleContext) -> EvaluationResult:
        if context.event_type is not SecurityEventType.LOGIN_SUCCESS:
            return EvaluationResult.no_match()
        if not context.user_id or not context.ip_address:
            return EvaluationResult.no_match()

        history = self._user_logins(context)
        matches: list[EvaluationResult] = []

        for pattern in self.config.patterns:
            if pattern == "rapid-ip-change":
                result = self._rapid_ip_change(context, history)
            elif pattern == "geo-impossible":
                result = self._geo_impossible(context, history)
            elif pattern == "proxy-pattern":
                result = self._proxy_pattern(context, history)
            else:
                logger.debug("Rule %s: ignoring unknown pattern %r", self.id, pattern)
                continue

            if result.matched:
                if self.config.match_type == "any":
                    return result
                matches.append(result)

        if self.config.match_type == "all" and matches and len(matches) == len(self.config.patterns):
            return combine_results(matches)
        return EvaluationResult.no_match()

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def _user_logins(self, context: RuleContext) -> list[HistoricalEvent]:
        """The user's successful logins inside the lookback window, oldest first."""
        logins = of_type(
            within_window(context, self.config.lookback_minutes),
            SecurityEventType.LOGIN_SUCCESS,
        )
        return chronological(
            e for e in logins if e.metadata.get("userId") == context.user_id
        )

    # ------------------------------------------------------------------
    # Sub-patterns
    # ------------------------------------------------------------------

    def _rapid_ip_change(
        self, context: RuleContext, history: list[HistoricalEvent],
    ) -> EvaluationResult:
        # dict keeps first-seen order of the addresses
        ips = list(dict.fromkeys(e.ip_address for e in history if e.ip_address))
        unique_ips = len(ips)
        if unique_ips < self.config.max_ips_threshold:
            return EvaluationResult.no_match()

        limit_seconds = self.config.suspicious_ip_change_minutes * 60
        rapid_changes = 0
        for prev, curr in zip(history, history[1:]):
            if prev.ip_address == curr.ip_address:
                continue
            if (curr.timestamp - prev.timestamp).total_seconds() < limit_seconds:
                rapid_changes += 1

        score = min(100, unique_ips / 10 * 100 + rapid_changes * 10)
        return EvaluationResult(
            matched=True,
            severity=Severity.CRITICAL if unique_ips >= 5 else Severity.HIGH,
            score=round(score),
            reason=(
                f"User logged in from {unique_ips} different IPs within "
                f"{self.config.lookback_minutes} minutes with {rapid_changes} rapid IP changes"
            ),
            evidence={
                "userId": context.user_id,
                "uniqueIps": unique_ips,
                "rapidChanges": rapid_changes,
                "ipAddresses": ips,
                "timeWindow": self.config.lookback_minutes,
            },
            suggested_actions=["REQUIRE_2FA", "INCREASE_MONITORING"],
        )

    def _geo_impossible(
        self, context: RuleContext, history: list[HistoricalEvent],
    ) -> EvaluationResult:
        if not self.config.geo_velocity_check:
            return EvaluationResult.no_match()

        current = HistoricalEvent(
            timestamp=context.timestamp,
            event_type=SecurityEventType.LOGIN_SUCCESS,
            ip_address=context.ip_address,
            metadata=context.metadata,
        )
        logins = [e for e in history if e.ip_address] + [current]

        for prev, curr in zip(logins, logins[1:]):
            if prev.ip_address == curr.ip_address:
                continue
            origin = GeoPoint.from_mapping(prev.metadata.get("location"))
            target = GeoPoint.from_mapping(curr.metadata.get("location"))
            if origin is None or target is None:
                continue

            distance = distance_km(origin, target)
            hours = (curr.timestamp - prev.timestamp).total_seconds() / 3600
            if hours <= 0:
                hours = _MIN_TIME_GAP_HOURS
            velocity = distance / hours
            if velocity <= self.config.max_velocity_km_per_hour:
                continue

            minutes = round(hours * 60)
            return EvaluationResult(
                matched=True,
                severity=Severity.CRITICAL,
                score=95,
                reason=(
                    f"Impossible travel detected: {round(distance)}km in "
                    f"{minutes} minutes ({round(velocity)}km/h)"
                ),
                evidence={
                    "fromIp": prev.ip_address,
                    "toIp": curr.ip_address,
                    "fromLocation": dict(prev.metadata["location"]),
                    "toLocation": dict(curr.metadata["location"]),
                    "distance": round(distance),
                    "timeDiffMinutes": minutes,
                    "velocity": round(velocity),
                    "maxVelocity": self.config.max_velocity_km_per_hour,
                },
                suggested_actions=["INVALIDATE_SESSIONS", "REQUIRE_2FA", "BLOCK_IP"],
            )

        return EvaluationResult.no_match()

    def _proxy_pattern(
        self, context: RuleContext, history: list[HistoricalEvent],
    ) -> EvaluationResult:
        if not self.config.vpn_detection:
            return EvaluationResult.no_match()

        countries: dict[Any, None] = {}
        asns: dict[Any, None] = {}
        datacenter_ips: list[str | None] = []

        samples = [(e.ip_address, e.metadata) for e in history if e.ip_address]
        samples.append((context.ip_address, context.metadata))
        for ip, metadata in samples:
            country = country_of(metadata)
            if country:
                countries.setdefault(country, None)
            if metadata.get("asn"):
                asns.setdefault(metadata["asn"], None)
            if metadata.get("isDatacenter"):
                datacenter_ips.append(ip)

        ratio = len(datacenter_ips) / len(samples)
        if not (len(countries) > 3 or len(asns) > 5 or ratio > 0.5):
            return EvaluationResult.no_match()

        score = min(100, len(countries) * 10 + len(asns) * 5 + ratio * 50)
        return EvaluationResult(
            matched=True,
            severity=Severity.CRITICAL if ratio > 0.8 else Severity.HIGH,
            score=round(score),
            reason=(
                f"Proxy/VPN pattern detected: {len(countries)} countries, "
                f"{len(asns)} ASNs, {round(ratio * 100)}% datacenter IPs"
            ),
            evidence={
                "uniqueCountries": len(countries),
                "uniqueAsns": len(asns),
                "datacenterRatio": ratio,
                "datacenterIps": datacenter_ips,
                "countries": list(countries),
                "asns": list(asns),
            },
            suggested_actions=["REQUIRE_2FA", "INCREASE_MONITORING"],
        )

    # ------------------------------------------------------------------

    def validate(self) -> bool:
        cfg = self.config
        return (
            len(cfg.patterns) > 0
            and all(p in IP_HOPPING_PATTERNS for p in cfg.patterns)
            and cfg.match_type in MATCH_TYPES
            and cfg.lookback_minutes > 0
            and cfg.max_ips_threshold > 0
            and cfg.suspicious_ip_change_minutes > 0
            and cfg.max_velocity_km_per_hour > 0
        )

    def describe(self) -> str:
        patterns = ", ".join(self.config.patterns)
        return (
            f"Detects IP hopping patterns including {patterns} "
            f"within {self.config.lookback_minutes} minutes"
        )
