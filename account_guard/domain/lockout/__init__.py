# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from .entities import (
    AccountIdentity,
    AccountLockoutState,
    AccountUpdate,
    AnomalyDetectionResult,
    IpAttemptWindow,
    IpBlock,
    LockedUserInfo,
    LockoutCleanupResult,
    LockoutConfiguration,
    LockoutReport,
    LockoutResult,
    LockoutStatus,
    LoginAttempt,
    RateLimitStatus,
    SecurityEvent,
    SecurityEventType,
    UserAtRiskInfo,
    normalize_email,
)
from .exceptions import InvalidCredentialsError, InvariantViolation
from .policy import lockout_duration_for
from .repositories import AccountStore, KnownDeviceStore, StagedAccountWrites

__all__ = [
    "AccountIdentity",
    "AccountLockoutState",
    "AccountStore",
    "AccountUpdate",
    "AnomalyDetectionResult",
    "InvalidCredentialsError",
    "InvariantViolation",
    "IpAttemptWindow",
    "IpBlock",
    "KnownDeviceStore",
    "LockedUserInfo",
    "LockoutCleanupResult",
    "LockoutConfiguration",
    "LockoutReport",
    "LockoutResult",
    "LockoutStatus",
    "LoginAttempt",
    "RateLimitStatus",
    "SecurityEvent",
    "SecurityEventType",
    "StagedAccountWrites",
    "UserAtRiskInfo",
    "lockout_duration_for",
    "normalize_email",
]
