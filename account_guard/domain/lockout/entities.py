# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""Domain entities for account lockout and authentication-risk control."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from .exceptions import InvariantViolation

AccountIdentity = int | str

DEFAULT_LOCKOUT_PROGRESSION: tuple[timedelta, ...] = (
    timedelta(minutes=5),
    timedelta(minutes=15),
    timedelta(hours=1),
    timedelta(hours=24),
)


def normalize_email(value: str) -> str:
    return value.strip().lower()


@dataclass(slots=True, frozen=True)
class AccountLockoutState:
    """Lockout counters attached to a user record."""

    id: int
    email: str
    display_name: str = ""
    failed_login_attempts: int = 0
    lockout_end: datetime | None = None
    version: int = 0

    def __post_init__(self) -> None:
        if self.failed_login_attempts < 0:
            raise InvariantViolation(
                "failed attempts must be non-negative", field="failed_login_attempts"
            )

    @property
    def normalized_email(self) -> str:
        return normalize_email(self.email)

    @property
    def has_default_counters(self) -> bool:
        return self.failed_login_attempts == 0 and self.lockout_end is None

    def is_currently_locked_out(self, now: datetime) -> bool:
        return self.lockout_end is not None and now < self.lockout_end

    def time_remaining(self, now: datetime) -> timedelta | None:
        if self.lockout_end is None or now >= self.lockout_end:
            return None
        return self.lockout_end - now


@dataclass(slots=True, frozen=True)
class AccountUpdate:
    """Compare-and-set write of an account's lockout counters."""

    account_id: int
    expected_version: int
    failed_login_attempts: int
    lockout_end: datetime | None

    def apply_to(self, account: AccountLockoutState) -> AccountLockoutState:
        return AccountLockoutState(
            id=account.id,
            email=account.email,
            display_name=account.display_name,
            failed_login_attempts=self.failed_login_attempts,
            lockout_end=self.lockout_end,
            version=self.expected_version + 1,
        )


@dataclass(slots=True, frozen=True)
class LockoutConfiguration:
    """Immutable snapshot of every lockout tunable for one evaluation."""

    max_failed_attempts: int = 5
    lockout_duration: timedelta = timedelta(minutes=15)
    enable_progressive_lockout: bool = True
    lockout_progression: tuple[timedelta, ...] = DEFAULT_LOCKOUT_PROGRESSION
    failed_attempt_window: timedelta = timedelta(minutes=15)
    reset_attempts_on_success: bool = True
    enable_ip_blocking: bool = True
    max_failed_attempts_per_ip: int = 10
    ip_block_duration: timedelta = timedelta(minutes=30)
    notify_on_lockout: bool = True
    notify_admin_on_lockout: bool = True
    enable_anomaly_detection: bool = True
    trusted_ip_ranges: tuple[str, ...] = ()
    blocked_ip_ranges: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "lockout_progression", tuple(self.lockout_progression))
        object.__setattr__(self, "trusted_ip_ranges", tuple(self.trusted_ip_ranges))
        object.__setattr__(self, "blocked_ip_ranges", tuple(self.blocked_ip_ranges))
        if self.max_failed_attempts < 1:
            raise InvariantViolation("must allow at least one attempt", field="max_failed_attempts")
        if self.max_failed_attempts_per_ip < 1:
            raise InvariantViolation(
                "must allow at least one attempt", field="max_failed_attempts_per_ip"
            )
        if not self.lockout_progression:
            raise InvariantViolation("progression must not be empty", field="lockout_progression")
        for fld in ("lockout_duration", "failed_attempt_window", "ip_block_duration"):
            if getattr(self, fld) <= timedelta(0):
                raise InvariantViolation("duration must be positive", field=fld)
        if any(step <= timedelta(0) for step in self.lockout_progression):
            raise InvariantViolation("durations must be positive", field="lockout_progression")


@dataclass(slots=True)
class LockoutResult:
    is_locked_out: bool = False
    was_already_locked: bool = False
    failed_attempts: int = 0
    max_failed_attempts: int = 0
    lockout_end: datetime | None = None
    lockout_duration: timedelta | None = None
    reason: str | None = None
    requires_admin_intervention: bool = False
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class LockoutStatus:
    is_locked_out: bool = False
    lockout_end: datetime | None = None
    time_remaining: timedelta | None = None
    failed_attempts: int = 0
    max_failed_attempts: int = 0
    remaining_attempts: int = 0
    lockout_reason: str | None = None
    can_retry_now: bool = True
    next_retry_time: datetime | None = None


@dataclass(slots=True)
class RateLimitStatus:
    is_rate_limited: bool = False
    current_attempts: int = 0
    max_attempts: int = 0
    window_duration: timedelta = timedelta(0)
    window_start: datetime | None = None
    next_allowed_time: datetime | None = None
    retry_after: timedelta | None = None
    is_blocked: bool = False


@dataclass(slots=True, frozen=True)
class IpBlock:
    ip_address: str
    reason: str
    blocked_at: datetime
    expires_at: datetime


@dataclass(slots=True, frozen=True)
class IpAttemptWindow:
    """Fixed-window failure counter for one source address."""

    count: int
    window_start: datetime
    window_end: datetime


@dataclass(slots=True, frozen=True)
class LoginAttempt:
    email: str
    timestamp: datetime
    ip_address: str | None = None
    user_agent: str | None = None
    device_fingerprint: str | None = None
    location: str | None = None
    is_success: bool = False
    failure_reason: str | None = None


@dataclass(slots=True)
class AnomalyDetectionResult:
    is_anomalous: bool = False
    anomaly_score: float = 0.0
    anomaly_types: list[str] = field(default_factory=list)
    requires_additional_verification: bool = False
    recommended_action: str = "Allow"
    suspicious_factors: list[str] = field(default_factory=list)


class SecurityEventType(str, Enum):
    FAILED_LOGIN = "FailedLogin"
    SUCCESSFUL_LOGIN = "SuccessfulLogin"
    AUTOMATIC_LOCKOUT = "AutomaticLockout"
    MANUAL_LOCKOUT = "ManualLockout"
    MANUAL_UNLOCK = "ManualUnlock"
    EXPIRED_LOCKOUT_CLEARED = "ExpiredLockoutCleared"
    IP_BLOCKED = "IpBlocked"
    IP_UNBLOCKED = "IpUnblocked"


LOCK_EVENT_TYPES = frozenset(
    {SecurityEventType.AUTOMATIC_LOCKOUT, SecurityEventType.MANUAL_LOCKOUT}
)
RELEASE_EVENT_TYPES = frozenset(
    {SecurityEventType.MANUAL_UNLOCK, SecurityEventType.EXPIRED_LOCKOUT_CLEARED}
)


@dataclass(slots=True, frozen=True)
class SecurityEvent:
    event_id: str
    event_type: SecurityEventType
    timestamp: datetime
    account_id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    description: str = ""
    severity: str = "Info"
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class LockedUserInfo:
    account_id: int
    email: str
    display_name: str
    locked_at: datetime
    lockout_end: datetime | None
    lockout_reason: str
    failed_attempts: int
    time_remaining: timedelta | None
    requires_admin_action: bool = True
    last_attempt_ip: str | None = None


@dataclass(slots=True)
class UserAtRiskInfo:
    account_id: int
    email: str
    display_name: str
    failed_attempts: int
    max_failed_attempts: int
    remaining_attempts: int
    risk_level: str
    last_failed_attempt: datetime | None = None
    last_attempt_ip: str | None = None


@dataclass(slots=True)
class LockoutReport:
    report_period_start: datetime
    report_period_end: datetime
    total_lockouts: int = 0
    unique_lockout_users: int = 0
    automatic_lockouts: int = 0
    manual_lockouts: int = 0
    resolved_lockouts: int = 0
    pending_lockouts: int = 0
    lockouts_by_day: dict[str, int] = field(default_factory=dict)
    lockouts_by_hour: dict[str, int] = field(default_factory=dict)
    lockouts_by_reason: dict[str, int] = field(default_factory=dict)
    top_locked_users: list[str] = field(default_factory=list)
    top_source_ips: list[str] = field(default_factory=list)
    average_lockout_duration: timedelta = timedelta(0)


@dataclass(slots=True)
class LockoutCleanupResult:
    cleanup_timestamp: datetime
    expired_lockouts_cleared: int = 0
    blocked_ips_cleared: int = 0
    cleanup_duration: timedelta = timedelta(0)
    errors: list[str] = field(default_factory=list)

    @property
    def was_successful(self) -> bool:
        return not self.errors


__all__ = [
    "AccountIdentity",
    "AccountLockoutState",
    "AccountUpdate",
    "AnomalyDetectionResult",
    "DEFAULT_LOCKOUT_PROGRESSION",
    "IpAttemptWindow",
    "IpBlock",
    "LOCK_EVENT_TYPES",
    "LockedUserInfo",
    "LockoutCleanupResult",
    "LockoutConfiguration",
    "LockoutReport",
    "LockoutResult",
    "LockoutStatus",
    "LoginAttempt",
    "RELEASE_EVENT_TYPES",
    "RateLimitStatus",
    "SecurityEvent",
    "SecurityEventType",
    "UserAtRiskInfo",
    "normalize_email",
]
