# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

from datetime import datetime

from account_guard.domain.lockout import (
    AccountIdentity,
    AccountLockoutState,
    LockoutConfiguration,
    LockoutResult,
    SecurityEventType,
    StagedAccountWrites,
)
from account_guard.domain.lockout.policy import (
    already_locked_result,
    failed_attempt_result,
    register_failed_attempt,
    reset_counters,
)
from account_guard.infrastructure import observability
from account_guard.shared.logging import logger

from .context import LockoutContext
from .rate_limiter import IpRateLimiter


class AttemptLedger:
    """Records login outcomes against the account counters and the IP counters."""

    def __init__(self, context: LockoutContext, rate_limiter: IpRateLimiter) -> None:
        self._ctx = context
        self._rate_limiter = rate_limiter

    async def record_failed_attempt(
        self,
        identity: AccountIdentity,
        ip_address: str | None = None,
        user_agent: str | None = None,
        reason: str | None = None,
        *,
        timeout: float | None = None,
    ) -> LockoutResult:
        with observability.track_latency("record_failed_attempt"):
            try:
                config = await self._ctx.load_config(timeout)
            except Exception as exc:
                closed = self._ctx.degrade("record_failed_attempt", exc)
                fallback = LockoutConfiguration()
                await self._rate_limiter.register_failure(ip_address, fallback)
                return self._ctx.degraded_result(fallback, closed)

            # Counted for every call, whatever happens to the account.
            await self._rate_limiter.register_failure(ip_address, config)

            try:
                before, after, now = await self._ctx.with_conflict_retry(
                    lambda: self._increment(identity, config, timeout)
                )
            except Exception as exc:
                closed = self._ctx.degrade("record_failed_attempt", exc)
                return self._ctx.degraded_result(config, closed)

            details = {"reason": reason} if reason else None

            if before is None:
                observability.record_failed_attempt(known_account=False)
                await self._ctx.emit(
                    SecurityEventType.FAILED_LOGIN,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    details=details,
                )
                return LockoutResult(max_failed_attempts=config.max_failed_attempts)

            observability.record_failed_attempt(known_account=True)
            await self._ctx.emit(
                SecurityEventType.FAILED_LOGIN,
                account_id=before.id,
                ip_address=ip_address,
                user_agent=user_agent,
                details=details,
            )

            if after is None:
                logger.info(f"ledger: failure for already locked account {before.id}")
                return already_locked_result(before, config, now)

            self._ctx.status_cache.invalidate_account(after)
            result = failed_attempt_result(after, config, now)
            if result.is_locked_out:
                await self._on_automatic_lockout(after, result, config, ip_address, user_agent)
            return result

    async def _increment(
        self, identity: AccountIdentity, config: LockoutConfiguration, timeout: float | None
    ) -> tuple[AccountLockoutState | None, AccountLockoutState | None, datetime]:
        account = await self._ctx.call_store(
            self._ctx.accounts.get_by_identity, identity, timeout=timeout
        )
        now = self._ctx.now()
        if account is None or account.is_currently_locked_out(now):
            return account, None, now
        change = register_failed_attempt(account, config, now)
        updated = await self._ctx.call_store(self._ctx.accounts.update, change, timeout=timeout)
        return account, updated, now

    async def _on_automatic_lockout(
        self,
        account: AccountLockoutState,
        result: LockoutResult,
        config: LockoutConfiguration,
        ip_address: str | None,
        user_agent: str | None,
    ) -> None:
        observability.record_lockout("automatic")
        logger.warning(
            f"ledger: account {account.id} locked until {result.lockout_end} "
            f"after {result.failed_attempts} failures"
        )
        await self._ctx.emit(
            SecurityEventType.AUTOMATIC_LOCKOUT,
            account_id=account.id,
            ip_address=ip_address,
            user_agent=user_agent,
            details={
                "reason": result.reason,
                "failed_attempts": result.failed_attempts,
                "duration_seconds": result.lockout_duration.total_seconds()
                if result.lockout_duration
                else None,
            },
        )
        await self._ctx.notify_lockout(account.id, result, config)

    async def record_successful_login(
        self,
        identity: AccountIdentity,
        ip_address: str | None = None,
        user_agent: str | None = None,
        *,
        device_fingerprint: str | None = None,
        timeout: float | None = None,
    ) -> bool:
        """Reset the counters after a good login; ``False`` when nothing was recorded."""

        try:
            config = await self._ctx.load_config(timeout)
            account = await self._ctx.with_conflict_retry(
                lambda: self._reset(identity, config, timeout)
            )
        except Exception as exc:
            self._ctx.degrade("record_successful_login", exc)
            return False

        if account is None:
            logger.warning("ledger: successful login reported for unknown account")
            return False

        await self._after_success(account, ip_address, user_agent, device_fingerprint, timeout)
        return True

    async def _reset(
        self, identity: AccountIdentity, config: LockoutConfiguration, timeout: float | None
    ) -> AccountLockoutState | None:
        account = await self._ctx.call_store(
            self._ctx.accounts.get_by_identity, identity, timeout=timeout
        )
        if account is None or account.has_default_counters or not config.reset_attempts_on_success:
            return account
        return await self._ctx.call_store(
            self._ctx.accounts.update, reset_counters(account), timeout=timeout
        )

    async def stage_successful_login(
        self,
        identity: AccountIdentity,
        writes: StagedAccountWrites,
        ip_address: str | None = None,
        user_agent: str | None = None,
        *,
        device_fingerprint: str | None = None,
        timeout: float | None = None,
    ) -> bool:
        """Like ``record_successful_login`` but the reset is persisted by the caller's commit.

        Cached status is dropped now and again once the caller commits.

        A version conflict surfaces from ``writes.stage`` and is not retried:
        the caller owns the transaction and must roll it back.
        """

        try:
            config = await self._ctx.load_config(timeout)
            account = await self._ctx.call_store(
                self._ctx.accounts.get_by_identity, identity, timeout=timeout
            )
        except Exception as exc:
            self._ctx.degrade("stage_successful_login", exc)
            return False

        if account is None:
            return False
        if not account.has_default_counters and config.reset_attempts_on_success:
            writes.stage(reset_counters(account))
            # Reads between now and the commit still see the old counters.
            writes.after_commit(lambda: self._ctx.status_cache.invalidate_account(account))

        await self._after_success(account, ip_address, user_agent, device_fingerprint, timeout)
        return True

    async def record_successful_login_event(
        self,
        account_id: int,
        ip_address: str | None = None,
        user_agent: str | None = None,
        *,
        email: str | None = None,
    ) -> None:
        """Emit the event and drop cached status without touching the store."""

        await self._ctx.emit(
            SecurityEventType.SUCCESSFUL_LOGIN,
            account_id=account_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self._ctx.status_cache.invalidate(account_id, email)

    async def _after_success(
        self,
        account: AccountLockoutState,
        ip_address: str | None,
        user_agent: str | None,
        device_fingerprint: str | None,
        timeout: float | None,
    ) -> None:
        self._ctx.status_cache.invalidate_account(account)
        await self._ctx.emit(
            SecurityEventType.SUCCESSFUL_LOGIN,
            account_id=account.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        if device_fingerprint and self._ctx.known_devices is not None:
            try:
                await self._ctx.call_store(
                    self._ctx.known_devices.remember,
                    account.id,
                    device_fingerprint,
                    timeout=timeout,
                )
            except Exception:
                logger.exception(f"ledger: could not remember device for account {account.id}")
        logger.debug(f"ledger: successful login recorded for account {account.id}")


__all__ = ["AttemptLedger"]
