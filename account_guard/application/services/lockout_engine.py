# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""Single entry point the authentication flow talks to.

``AccountLockoutEngine`` wires the lockout components around one shared
``LockoutContext`` and forwards every public operation to the component that
owns it. It holds no state of its own beyond that context.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from account_guard.application.interfaces import (
    CachePort,
    ConfigurationProvider,
    NotificationPort,
    SecurityEventQuery,
    SecurityEventSink,
)
from account_guard.application.services.lockout_configuration import (
    save_lockout_configuration,
)
from account_guard.application.use_cases.lockout import (
    AnomalyScorer,
    AttemptLedger,
    IpRateLimiter,
    LockoutContext,
    LockoutPolicyService,
    LockoutReporting,
)
from account_guard.application.use_cases.lockout.context import Clock, utc_now
from account_guard.domain.lockout import (
    AccountIdentity,
    AccountStore,
    AnomalyDetectionResult,
    KnownDeviceStore,
    LockedUserInfo,
    LockoutCleanupResult,
    LockoutConfiguration,
    LockoutReport,
    LockoutResult,
    LockoutStatus,
    LoginAttempt,
    RateLimitStatus,
    SecurityEvent,
    StagedAccountWrites,
    UserAtRiskInfo,
    lockout_duration_for,
)
from account_guard.infrastructure.resilience import CircuitBreaker
from account_guard.shared.config import AppConfig, load_config
from account_guard.shared.logging import logger


class AccountLockoutEngine:
    def __init__(
        self,
        *,
        accounts: AccountStore,
        configuration: ConfigurationProvider,
        cache: CachePort,
        events: SecurityEventSink,
        notifications: NotificationPort | None = None,
        known_devices: KnownDeviceStore | None = None,
        event_history: SecurityEventQuery | None = None,
        settings: AppConfig | None = None,
        clock: Clock = utc_now,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self._context = LockoutContext(
            accounts=accounts,
            configuration=configuration,
            cache=cache,
            events=events,
            notifications=notifications,
            known_devices=known_devices,
            event_history=event_history,
            settings=settings or load_config(),
            clock=clock,
            breaker=breaker,
        )
        self._rate_limiter = IpRateLimiter(self._context)
        self._ledger = AttemptLedger(self._context, self._rate_limiter)
        self._policy = LockoutPolicyService(self._context)
        self._anomaly = AnomalyScorer(self._context)
        self._reporting = LockoutReporting(self._context)

    @property
    def context(self) -> LockoutContext:
        return self._context

    # Attempt ledger

    async def record_failed_attempt(
        self,
        identity: AccountIdentity,
        ip_address: str | None = None,
        user_agent: str | None = None,
        reason: str | None = None,
        *,
        timeout: float | None = None,
    ) -> LockoutResult:
        return await self._ledger.record_failed_attempt(
            identity, ip_address, user_agent, reason, timeout=timeout
        )

    async def record_successful_login(
        self,
        identity: AccountIdentity,
        ip_address: str | None = None,
        user_agent: str | None = None,
        *,
        device_fingerprint: str | None = None,
        timeout: float | None = None,
    ) -> bool:
        return await self._ledger.record_successful_login(
            identity,
            ip_address,
            user_agent,
            device_fingerprint=device_fingerprint,
            timeout=timeout,
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
        return await self._ledger.stage_successful_login(
            identity,
            writes,
            ip_address,
            user_agent,
            device_fingerprint=device_fingerprint,
            timeout=timeout,
        )

    async def record_successful_login_event(
        self,
        account_id: int,
        ip_address: str | None = None,
        user_agent: str | None = None,
        *,
        email: str | None = None,
    ) -> None:
        await self._ledger.record_successful_login_event(
            account_id, ip_address, user_agent, email=email
        )

    # Lockout policy

    async def get_lockout_status(
        self, identity: AccountIdentity, *, timeout: float | None = None
    ) -> LockoutStatus:
        return await self._policy.status(identity, timeout=timeout)

    async def is_account_locked_out(
        self, identity: AccountIdentity, *, timeout: float | None = None
    ) -> bool:
        status = await self._policy.status(identity, timeout=timeout)
        return status.is_locked_out

    async def get_failed_login_attempts(
        self, identity: AccountIdentity, *, timeout: float | None = None
    ) -> int:
        return await self._policy.get_failed_login_attempts(identity, timeout=timeout)

    async def lock_account(
        self,
        identity: AccountIdentity,
        reason: str,
        duration: timedelta | None = None,
        locked_by: int | None = None,
        *,
        timeout: float | None = None,
    ) -> LockoutResult:
        return await self._policy.lock_account(
            identity, reason, duration, locked_by, timeout=timeout
        )

    async def unlock_account(
        self,
        identity: AccountIdentity,
        reason: str,
        unlocked_by: int | None = None,
        *,
        timeout: float | None = None,
    ) -> bool:
        return await self._policy.unlock_account(identity, reason, unlocked_by, timeout=timeout)

    async def get_lockout_duration(
        self, failed_attempts: int, *, timeout: float | None = None
    ) -> timedelta:
        config = await self.get_lockout_configuration(timeout=timeout)
        return lockout_duration_for(failed_attempts, config)

    # IP rate limiting

    async def check_ip_rate_limit(
        self, ip_address: str, *, timeout: float | None = None
    ) -> RateLimitStatus:
        return await self._rate_limiter.check_ip_rate_limit(ip_address, timeout=timeout)

    async def get_failed_attempts_by_ip(self, ip_address: str) -> int:
        return await self._rate_limiter.get_failed_attempts_by_ip(ip_address)

    async def block_ip_address(
        self,
        ip_address: str,
        reason: str,
        duration: timedelta,
        blocked_by: int | None = None,
    ) -> bool:
        return await self._rate_limiter.block_ip_address(
            ip_address, reason, duration, blocked_by=blocked_by
        )

    async def unblock_ip_address(
        self, ip_address: str, reason: str, unblocked_by: int | None = None
    ) -> bool:
        return await self._rate_limiter.unblock_ip_address(
            ip_address, reason, unblocked_by=unblocked_by
        )

    # Anomaly scoring

    async def analyze_login_pattern(
        self,
        identity: AccountIdentity,
        attempt: LoginAttempt,
        *,
        timeout: float | None = None,
    ) -> AnomalyDetectionResult:
        return await self._anomaly.analyze_login_pattern(identity, attempt, timeout=timeout)

    # Reporting and cleanup

    async def perform_automated_cleanup(
        self, *, timeout: float | None = None
    ) -> LockoutCleanupResult:
        return await self._reporting.perform_automated_cleanup(timeout=timeout)

    async def get_locked_users(self, *, timeout: float | None = None) -> list[LockedUserInfo]:
        return await self._reporting.get_locked_users(timeout=timeout)

    async def get_users_at_risk(self, *, timeout: float | None = None) -> list[UserAtRiskInfo]:
        return await self._reporting.get_users_at_risk(timeout=timeout)

    async def generate_lockout_report(
        self, start: datetime, end: datetime, *, timeout: float | None = None
    ) -> LockoutReport:
        return await self._reporting.generate_lockout_report(start, end, timeout=timeout)

    async def get_user_security_events(
        self, account_id: int, days: int = 30, *, timeout: float | None = None
    ) -> list[SecurityEvent]:
        return await self._reporting.get_user_security_events(account_id, days, timeout=timeout)

    async def get_system_security_events(
        self, hours: int = 24, *, timeout: float | None = None
    ) -> list[SecurityEvent]:
        return await self._reporting.get_system_security_events(hours, timeout=timeout)

    # Configuration

    async def get_lockout_configuration(
        self, *, timeout: float | None = None
    ) -> LockoutConfiguration:
        try:
            return await self._context.load_config(timeout)
        except Exception as exc:
            self._context.degrade("get_lockout_configuration", exc)
            return LockoutConfiguration()

    async def update_lockout_configuration(self, config: LockoutConfiguration) -> bool:
        """Persist every tunable of ``config``; ``False`` when nothing could be written."""

        provider = self._context.configuration
        if not hasattr(provider, "set_configuration"):
            logger.warning("engine: configuration provider is read-only")
            return False
        try:
            await save_lockout_configuration(
                provider,  # type: ignore[arg-type]
                config,
                category=self._context.settings.lockout.configuration_category,
            )
        except Exception:
            logger.exception("engine: failed to update lockout configuration")
            return False
        logger.info("engine: lockout configuration updated")
        return True


__all__ = ["AccountLockoutEngine"]
