# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""Collaborators and boundary helpers shared by the lockout components."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar

from account_guard.application.interfaces import (
    CachePort,
    ConfigurationProvider,
    NotificationPort,
    SecurityEventQuery,
    SecurityEventSink,
)
from account_guard.application.services.lockout_configuration import (
    load_lockout_configuration,
)
from account_guard.domain.lockout import (
    AccountStore,
    KnownDeviceStore,
    LockoutConfiguration,
    LockoutResult,
    SecurityEventType,
)
from account_guard.infrastructure import observability
from account_guard.infrastructure.resilience import (
    CircuitBreaker,
    guarded_call,
    retry_on_conflict,
)
from account_guard.shared.config import AppConfig, load_config
from account_guard.shared.logging import logger

from .status_cache import LockoutStatusCache

T = TypeVar("T")
Clock = Callable[[], datetime]

DEGRADED_WARNING = "Lockout state could not be evaluated"
FAIL_CLOSED_REASON = "Lockout state unavailable"


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class LockoutContext:
    accounts: AccountStore
    configuration: ConfigurationProvider
    cache: CachePort
    events: SecurityEventSink
    notifications: NotificationPort | None = None
    known_devices: KnownDeviceStore | None = None
    event_history: SecurityEventQuery | None = None
    settings: AppConfig = field(default_factory=load_config)
    clock: Clock = utc_now
    breaker: CircuitBreaker | None = None
    status_cache: LockoutStatusCache = field(init=False)

    def __post_init__(self) -> None:
        self.status_cache = LockoutStatusCache(
            self.cache, ttl=timedelta(seconds=self.settings.cache.status_ttl_seconds)
        )

    def now(self) -> datetime:
        return self.clock()

    @property
    def fail_closed(self) -> bool:
        return self.settings.lockout.failure_mode == "fail-closed"

    def timeout_for(self, timeout: float | None) -> float:
        return timeout if timeout is not None else self.settings.resilience.operation_timeout

    async def load_config(self, timeout: float | None = None) -> LockoutConfiguration:
        return await guarded_call(
            load_lockout_configuration,
            self.configuration,
            category=self.settings.lockout.configuration_category,
            timeout=self.timeout_for(timeout),
        )

    async def call_store(  # noqa: UP047
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> T:
        return await guarded_call(
            func, *args, breaker=self.breaker, timeout=self.timeout_for(timeout), **kwargs
        )

    async def with_conflict_retry(self, operation: Callable[[], Awaitable[T]]) -> T:  # noqa: UP047
        resilience = self.settings.resilience
        return await retry_on_conflict(
            operation,
            retries=resilience.conflict_retries,
            backoff_base=resilience.backoff_base,
            backoff_cap=resilience.backoff_cap,
        )

    def degrade(self, operation: str, exc: BaseException) -> bool:
        """Log a boundary failure and report whether to answer fail-closed."""

        mode = self.settings.lockout.failure_mode
        if isinstance(exc, TimeoutError):
            logger.error(f"lockout: {operation} timed out, answering {mode}")
        else:
            logger.opt(exception=exc).error(f"lockout: {operation} failed, answering {mode}")
        observability.record_degraded(operation, mode)
        return self.fail_closed

    def degraded_result(self, config: LockoutConfiguration, closed: bool) -> LockoutResult:
        return LockoutResult(
            is_locked_out=closed,
            max_failed_attempts=config.max_failed_attempts,
            reason=FAIL_CLOSED_REASON if closed else None,
            warnings=[DEGRADED_WARNING],
        )

    async def emit(
        self,
        event_type: SecurityEventType,
        *,
        account_id: int | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        try:
            await guarded_call(
                self.events.record,
                event_type,
                timeout=self.timeout_for(None),
                account_id=account_id,
                ip_address=ip_address,
                user_agent=user_agent,
                details=details,
            )
        except Exception:
            logger.exception(f"lockout: failed to record {event_type.value} event")

    async def notify_lockout(
        self, account_id: int, result: LockoutResult, config: LockoutConfiguration
    ) -> None:
        if self.notifications is None:
            return
        try:
            if config.notify_on_lockout:
                await guarded_call(
                    self.notifications.send_lockout_notification,
                    account_id,
                    result,
                    timeout=self.timeout_for(None),
                )
            if config.notify_admin_on_lockout:
                await guarded_call(
                    self.notifications.send_admin_lockout_notification,
                    account_id,
                    result,
                    timeout=self.timeout_for(None),
                )
        except Exception:
            logger.exception(f"lockout: notification for account {account_id} failed")


__all__ = [
    "Clock",
    "DEGRADED_WARNING",
    "FAIL_CLOSED_REASON",
    "LockoutContext",
    "utc_now",
]
