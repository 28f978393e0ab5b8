# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""Pure lockout decisions.

Every function here is a function of an account snapshot, a
``LockoutConfiguration`` and the current time. Nothing here touches storage,
caches or clocks, so the orchestration layer can retry and cache freely.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from .entities import (
    AccountLockoutState,
    AccountUpdate,
    LockoutConfiguration,
    LockoutResult,
    LockoutStatus,
)

AUTOMATIC_LOCKOUT_REASON = "Account locked due to failed login attempts"
STATUS_LOCKOUT_REASON = "Exceeded maximum failed login attempts"


def lockout_duration_for(failed_attempts: int, config: LockoutConfiguration) -> timedelta:
    """Return how long an account with ``failed_attempts`` failures is locked for.

    With progressive lockout the schedule is indexed by how far the count is
    past the threshold and clamped to its last entry.
    """

    if not config.enable_progressive_lockout:
        return config.lockout_duration

    progression = config.lockout_progression
    index = min(failed_attempts - config.max_failed_attempts, len(progression) - 1)
    if index < 0:
        return config.lockout_duration
    return progression[index]


def register_failed_attempt(
    account: AccountLockoutState, config: LockoutConfiguration, now: datetime
) -> AccountUpdate:
    attempts = account.failed_login_attempts + 1
    lockout_end = account.lockout_end
    if lockout_end is not None and lockout_end <= now:
        lockout_end = None
    if attempts >= config.max_failed_attempts:
        lockout_end = now + lockout_duration_for(attempts, config)
    return AccountUpdate(
        account_id=account.id,
        expected_version=account.version,
        failed_login_attempts=attempts,
        lockout_end=lockout_end,
    )


def reset_counters(account: AccountLockoutState) -> AccountUpdate:
    return AccountUpdate(
        account_id=account.id,
        expected_version=account.version,
        failed_login_attempts=0,
        lockout_end=None,
    )


def lock_until(account: AccountLockoutState, lockout_end: datetime) -> AccountUpdate:
    return AccountUpdate(
        account_id=account.id,
        expected_version=account.version,
        failed_login_attempts=account.failed_login_attempts,
        lockout_end=lockout_end,
    )


def clear_lockout(account: AccountLockoutState) -> AccountUpdate:
    # The failure counter survives so repeat offenders keep escalating.
    return AccountUpdate(
        account_id=account.id,
        expected_version=account.version,
        failed_login_attempts=account.failed_login_attempts,
        lockout_end=None,
    )


def already_locked_result(
    account: AccountLockoutState, config: LockoutConfiguration, now: datetime
) -> LockoutResult:
    return LockoutResult(
        is_locked_out=True,
        was_already_locked=True,
        failed_attempts=account.failed_login_attempts,
        max_failed_attempts=config.max_failed_attempts,
        lockout_end=account.lockout_end,
        lockout_duration=account.time_remaining(now),
        reason=AUTOMATIC_LOCKOUT_REASON,
    )


def failed_attempt_result(
    account: AccountLockoutState, config: LockoutConfiguration, now: datetime
) -> LockoutResult:
    locked = account.is_currently_locked_out(now)
    return LockoutResult(
        is_locked_out=locked,
        failed_attempts=account.failed_login_attempts,
        max_failed_attempts=config.max_failed_attempts,
        lockout_end=account.lockout_end if locked else None,
        lockout_duration=account.time_remaining(now),
        reason=AUTOMATIC_LOCKOUT_REASON if locked else None,
    )


def build_status(
    account: AccountLockoutState | None, config: LockoutConfiguration, now: datetime
) -> LockoutStatus:
    if account is None:
        return LockoutStatus(
            max_failed_attempts=config.max_failed_attempts,
            remaining_attempts=config.max_failed_attempts,
        )

    locked = account.is_currently_locked_out(now)
    return LockoutStatus(
        is_locked_out=locked,
        lockout_end=account.lockout_end if locked else None,
        time_remaining=account.time_remaining(now),
        failed_attempts=account.failed_login_attempts,
        max_failed_attempts=config.max_failed_attempts,
        remaining_attempts=max(0, config.max_failed_attempts - account.failed_login_attempts),
        lockout_reason=STATUS_LOCKOUT_REASON if locked else None,
        can_retry_now=not locked,
        next_retry_time=account.lockout_end if locked else None,
    )


def risk_level(failed_attempts: int, config: LockoutConfiguration) -> str:
    return "High" if failed_attempts >= config.max_failed_attempts - 1 else "Medium"


__all__ = [
    "AUTOMATIC_LOCKOUT_REASON",
    "STATUS_LOCKOUT_REASON",
    "already_locked_result",
    "build_status",
    "clear_lockout",
    "failed_attempt_result",
    "lock_until",
    "lockout_duration_for",
    "register_failed_attempt",
    "reset_counters",
    "risk_level",
]
