# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta

from account_guard.domain.lockout import (
    AccountIdentity,
    AccountLockoutState,
    LockoutConfiguration,
    LockoutResult,
    LockoutStatus,
    SecurityEventType,
)
from account_guard.domain.lockout.policy import build_status, clear_lockout, lock_until
from account_guard.infrastructure import observability
from account_guard.shared.logging import logger

from .context import DEGRADED_WARNING, FAIL_CLOSED_REASON, LockoutContext

ACCOUNT_NOT_FOUND = "Account not found"


class LockoutPolicyService:
    """Status queries and administrative lock overrides."""

    def __init__(self, context: LockoutContext) -> None:
        self._ctx = context

    async def status(
        self, identity: AccountIdentity, *, timeout: float | None = None
    ) -> LockoutStatus:
        now = self._ctx.now()
        cached = self._ctx.status_cache.get(identity, now)
        if cached is not None:
            return _refreshed(cached, now)

        with self._ctx.status_cache.reading() as token:
            try:
                config = await self._ctx.load_config(timeout)
                account = await self._ctx.call_store(
                    self._ctx.accounts.get_by_identity, identity, timeout=timeout
                )
            except Exception as exc:
                closed = self._ctx.degrade("status", exc)
                return LockoutStatus(
                    is_locked_out=closed,
                    max_failed_attempts=LockoutConfiguration().max_failed_attempts,
                    lockout_reason=FAIL_CLOSED_REASON if closed else None,
                    can_retry_now=not closed,
                )

            now = self._ctx.now()
            status = build_status(account, config, now)
            if account is not None:
                self._ctx.status_cache.put(account, status, now, token=token)
            return status

    async def get_failed_login_attempts(
        self, identity: AccountIdentity, *, timeout: float | None = None
    ) -> int:
        try:
            account = await self._ctx.call_store(
                self._ctx.accounts.get_by_identity, identity, timeout=timeout
            )
        except Exception as exc:
            self._ctx.degrade("get_failed_login_attempts", exc)
            return 0
        return account.failed_login_attempts if account else 0

    async def lock_account(
        self,
        identity: AccountIdentity,
        reason: str,
        duration: timedelta | None = None,
        locked_by: int | None = None,
        *,
        timeout: float | None = None,
    ) -> LockoutResult:
        if duration is not None and duration <= timedelta(0):
            return LockoutResult(warnings=["Lockout duration must be positive"])

        try:
            config = await self._ctx.load_config(timeout)
            length = duration or config.lockout_duration
            account = await self._ctx.with_conflict_retry(
                lambda: self._lock(identity, length, timeout)
            )
        except Exception as exc:
            self._ctx.degrade("lock_account", exc)
            return LockoutResult(warnings=[DEGRADED_WARNING])

        if account is None:
            return LockoutResult(
                max_failed_attempts=config.max_failed_attempts, warnings=[ACCOUNT_NOT_FOUND]
            )

        result = LockoutResult(
            is_locked_out=True,
            failed_attempts=account.failed_login_attempts,
            max_failed_attempts=config.max_failed_attempts,
            lockout_end=account.lockout_end,
            lockout_duration=length,
            reason=reason,
            requires_admin_intervention=True,
        )
        self._ctx.status_cache.invalidate_account(account)
        observability.record_lockout("manual")
        logger.warning(
            f"policy: account {account.id} locked by {locked_by} until {account.lockout_end}"
        )
        await self._ctx.emit(
            SecurityEventType.MANUAL_LOCKOUT,
            account_id=account.id,
            details={
                "reason": reason,
                "locked_by": locked_by,
                "duration_seconds": length.total_seconds(),
            },
        )
        await self._ctx.notify_lockout(account.id, result, config)
        return result

    async def _lock(
        self, identity: AccountIdentity, length: timedelta, timeout: float | None
    ) -> AccountLockoutState | None:
        account = await self._ctx.call_store(
            self._ctx.accounts.get_by_identity, identity, timeout=timeout
        )
        if account is None:
            return None
        lockout_end = self._ctx.now() + length
        return await self._ctx.call_store(
            self._ctx.accounts.update, lock_until(account, lockout_end), timeout=timeout
        )

    async def unlock_account(
        self,
        identity: AccountIdentity,
        reason: str,
        unlocked_by: int | None = None,
        *,
        timeout: float | None = None,
    ) -> bool:
        """Clear ``lockout_end``; the failure counter is left alone.

        Unlocking an account that is not locked succeeds without a write.
        """

        try:
            account = await self._ctx.with_conflict_retry(lambda: self._unlock(identity, timeout))
        except Exception as exc:
            self._ctx.degrade("unlock_account", exc)
            return False

        if account is None:
            return False

        self._ctx.status_cache.invalidate_account(account)
        observability.record_unlock("manual")
        logger.info(f"policy: account {account.id} unlocked by {unlocked_by}")
        await self._ctx.emit(
            SecurityEventType.MANUAL_UNLOCK,
            account_id=account.id,
            details={"reason": reason, "unlocked_by": unlocked_by},
        )
        return True

    async def _unlock(
        self, identity: AccountIdentity, timeout: float | None
    ) -> AccountLockoutState | None:
        account = await self._ctx.call_store(
            self._ctx.accounts.get_by_identity, identity, timeout=timeout
        )
        if account is None or account.lockout_end is None:
            return account
        return await self._ctx.call_store(
            self._ctx.accounts.update, clear_lockout(account), timeout=timeout
        )


def _refreshed(status: LockoutStatus, now: datetime) -> LockoutStatus:
    if status.lockout_end is None:
        return status
    return replace(status, time_remaining=status.lockout_end - now)


__all__ = ["ACCOUNT_NOT_FOUND", "LockoutPolicyService"]
