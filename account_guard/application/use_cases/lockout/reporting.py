# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""Off-path sweeps and read-only summaries over the lockout ledger.

Nothing here runs on the authentication path. Results may be slightly stale
and every failure degrades to an empty answer.
"""

from __future__ import annotations

import time
from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta

from account_guard.domain.lockout import (
    AccountLockoutState,
    LockedUserInfo,
    LockoutCleanupResult,
    LockoutConfiguration,
    LockoutReport,
    SecurityEvent,
    SecurityEventType,
    UserAtRiskInfo,
)
from account_guard.domain.lockout.entities import LOCK_EVENT_TYPES, RELEASE_EVENT_TYPES
from account_guard.domain.lockout.policy import (
    AUTOMATIC_LOCKOUT_REASON,
    clear_lockout,
    risk_level,
)
from account_guard.infrastructure import observability
from account_guard.shared.logging import logger

from .context import LockoutContext

HISTORY_LOOKBACK = timedelta(days=30)
TOP_N = 10


class LockoutReporting:
    def __init__(self, context: LockoutContext) -> None:
        self._ctx = context

    async def perform_automated_cleanup(
        self, *, timeout: float | None = None
    ) -> LockoutCleanupResult:
        """Release every lockout whose end has passed and purge expired cache entries.

        Works on its own snapshot; each release is an independent compare-and-set
        and a failing account is reported in ``errors`` without stopping the sweep.
        """

        started = time.perf_counter()
        result = LockoutCleanupResult(cleanup_timestamp=self._ctx.now())

        try:
            locked = await self._ctx.call_store(
                self._ctx.accounts.get_locked_out_accounts, timeout=timeout
            )
        except Exception as exc:
            self._ctx.degrade("perform_automated_cleanup", exc)
            result.errors.append(f"could not load locked accounts: {exc}")
            result.cleanup_duration = timedelta(seconds=time.perf_counter() - started)
            return result

        now = self._ctx.now()
        for account in locked:
            if account.lockout_end is None or account.lockout_end > now:
                continue
            try:
                released = await self._ctx.with_conflict_retry(
                    lambda account_id=account.id: self._release_expired(account_id, timeout)
                )
            except Exception as exc:
                logger.exception(f"cleanup: failed to release account {account.id}")
                result.errors.append(f"account {account.id}: {exc}")
                continue
            if released is None:
                continue

            result.expired_lockouts_cleared += 1
            self._ctx.status_cache.invalidate_account(released)
            await self._ctx.emit(
                SecurityEventType.EXPIRED_LOCKOUT_CLEARED,
                account_id=released.id,
                details={"lockout_end": account.lockout_end.isoformat()},
            )

        result.blocked_ips_cleared = self._ctx.cache.purge_expired()
        result.cleanup_duration = timedelta(seconds=time.perf_counter() - started)
        observability.record_unlock("expired", result.expired_lockouts_cleared)
        logger.info(
            f"cleanup: cleared {result.expired_lockouts_cleared} expired lockouts, "
            f"purged {result.blocked_ips_cleared} cache entries, errors={len(result.errors)}"
        )
        return result

    async def _release_expired(
        self, account_id: int, timeout: float | None
    ) -> AccountLockoutState | None:
        account = await self._ctx.call_store(
            self._ctx.accounts.get_by_identity, account_id, timeout=timeout
        )
        # Re-locked or released by someone else since the snapshot.
        if account is None or account.lockout_end is None:
            return None
        if account.lockout_end > self._ctx.now():
            return None
        return await self._ctx.call_store(
            self._ctx.accounts.update, clear_lockout(account), timeout=timeout
        )

    async def get_locked_users(self, *, timeout: float | None = None) -> list[LockedUserInfo]:
        try:
            config = await self._ctx.load_config(timeout)
            accounts = await self._ctx.call_store(
                self._ctx.accounts.get_locked_out_accounts, timeout=timeout
            )
        except Exception as exc:
            self._ctx.degrade("get_locked_users", exc)
            return []

        now = self._ctx.now()
        locked = [account for account in accounts if account.is_currently_locked_out(now)]
        if not locked:
            return []

        lock_events = await self._latest_by_account(LOCK_EVENT_TYPES, now - HISTORY_LOOKBACK)
        failures = await self._latest_by_account(
            (SecurityEventType.FAILED_LOGIN,), now - HISTORY_LOOKBACK
        )

        users = []
        for account in locked:
            lockout_end = account.lockout_end or now
            event = lock_events.get(account.id)
            last_failure = failures.get(account.id)
            if event is not None:
                locked_at = event.timestamp
                reason = str(event.details.get("reason") or AUTOMATIC_LOCKOUT_REASON)
                admin_action = event.event_type is SecurityEventType.MANUAL_LOCKOUT
            else:
                locked_at = lockout_end - config.lockout_duration
                reason = AUTOMATIC_LOCKOUT_REASON
                admin_action = False
            users.append(
                LockedUserInfo(
                    account_id=account.id,
                    email=account.email,
                    display_name=account.display_name,
                    locked_at=locked_at,
                    lockout_end=lockout_end,
                    lockout_reason=reason,
                    failed_attempts=account.failed_login_attempts,
                    time_remaining=account.time_remaining(now),
                    requires_admin_action=admin_action,
                    last_attempt_ip=last_failure.ip_address if last_failure else None,
                )
            )
        return users

    async def get_users_at_risk(self, *, timeout: float | None = None) -> list[UserAtRiskInfo]:
        try:
            config = await self._ctx.load_config(timeout)
            accounts = await self._ctx.call_store(
                self._ctx.accounts.get_accounts_with_failed_attempts, 1, timeout=timeout
            )
        except Exception as exc:
            self._ctx.degrade("get_users_at_risk", exc)
            return []

        now = self._ctx.now()
        at_risk = [account for account in accounts if not account.is_currently_locked_out(now)]
        if not at_risk:
            return []

        failures = await self._latest_by_account(
            (SecurityEventType.FAILED_LOGIN,), now - HISTORY_LOOKBACK
        )
        users = []
        for account in at_risk:
            last_failure = failures.get(account.id)
            users.append(
                UserAtRiskInfo(
                    account_id=account.id,
                    email=account.email,
                    display_name=account.display_name,
                    failed_attempts=account.failed_login_attempts,
                    max_failed_attempts=config.max_failed_attempts,
                    remaining_attempts=max(
                        0, config.max_failed_attempts - account.failed_login_attempts
                    ),
                    risk_level=risk_level(account.failed_login_attempts, config),
                    last_failed_attempt=last_failure.timestamp if last_failure else None,
                    last_attempt_ip=last_failure.ip_address if last_failure else None,
                )
            )
        return users

    async def generate_lockout_report(
        self, start: datetime, end: datetime, *, timeout: float | None = None
    ) -> LockoutReport:
        report = LockoutReport(report_period_start=start, report_period_end=end)
        if end < start:
            logger.warning(f"report: empty period {start} > {end}")
            return report

        try:
            config = await self._ctx.load_config(timeout)
            accounts = await self._ctx.call_store(
                self._ctx.accounts.get_locked_out_accounts, timeout=timeout
            )
        except Exception as exc:
            self._ctx.degrade("generate_lockout_report", exc)
            return report

        now = self._ctx.now()
        currently_locked = [a for a in accounts if a.is_currently_locked_out(now)]
        report.pending_lockouts = len(currently_locked)

        events = await self._history(start, end, timeout=timeout)
        if events is None:
            _fill_from_snapshot(report, currently_locked, config)
            return report

        _fill_from_events(report, events, config)
        return report

    async def get_user_security_events(
        self, account_id: int, days: int = 30, *, timeout: float | None = None
    ) -> list[SecurityEvent]:
        if days <= 0:
            return []
        now = self._ctx.now()
        events = await self._history(
            now - timedelta(days=days), now, account_id=account_id, timeout=timeout
        )
        return list(events or [])

    async def get_system_security_events(
        self, hours: int = 24, *, timeout: float | None = None
    ) -> list[SecurityEvent]:
        if hours <= 0:
            return []
        now = self._ctx.now()
        events = await self._history(now - timedelta(hours=hours), now, timeout=timeout)
        return list(events or [])

    async def _history(
        self,
        since: datetime,
        until: datetime | None = None,
        *,
        account_id: int | None = None,
        event_types: Sequence[SecurityEventType] | None = None,
        timeout: float | None = None,
    ) -> Sequence[SecurityEvent] | None:
        """Query the event history; ``None`` when there is none to ask."""

        history = self._ctx.event_history
        if history is None:
            return None
        try:
            return await self._ctx.call_store(
                history.list_events,
                timeout=timeout,
                since=since,
                until=until,
                account_id=account_id,
                event_types=event_types,
            )
        except Exception:
            logger.exception("report: security event history unavailable")
            return None

    async def _latest_by_account(
        self, event_types: Iterable[SecurityEventType], since: datetime
    ) -> dict[int, SecurityEvent]:
        events = await self._history(since, event_types=list(event_types))
        latest: dict[int, SecurityEvent] = {}
        for event in events or ():
            if event.account_id is None:
                continue
            current = latest.get(event.account_id)
            if current is None or event.timestamp > current.timestamp:
                latest[event.account_id] = event
        return latest


def _fill_from_snapshot(
    report: LockoutReport,
    locked: list[AccountLockoutState],
    config: LockoutConfiguration,
) -> None:
    # Without history only the accounts locked right now can be counted.
    report.total_lockouts = len(locked)
    report.unique_lockout_users = len(locked)
    report.automatic_lockouts = len(locked)
    if locked:
        report.lockouts_by_reason = {AUTOMATIC_LOCKOUT_REASON: len(locked)}
    report.average_lockout_duration = config.lockout_duration


def _fill_from_events(
    report: LockoutReport,
    events: Sequence[SecurityEvent],
    config: LockoutConfiguration,
) -> None:
    lock_events = [e for e in events if e.event_type in LOCK_EVENT_TYPES]
    report.total_lockouts = len(lock_events)
    report.unique_lockout_users = len({e.account_id for e in lock_events if e.account_id})
    report.automatic_lockouts = sum(
        1 for e in lock_events if e.event_type is SecurityEventType.AUTOMATIC_LOCKOUT
    )
    report.manual_lockouts = report.total_lockouts - report.automatic_lockouts
    report.resolved_lockouts = sum(1 for e in events if e.event_type in RELEASE_EVENT_TYPES)

    by_day: Counter[str] = Counter()
    by_hour: Counter[str] = Counter()
    by_reason: Counter[str] = Counter()
    by_user: Counter[str] = Counter()
    durations: list[float] = []
    for event in lock_events:
        by_day[event.timestamp.date().isoformat()] += 1
        by_hour[f"{event.timestamp.hour:02d}:00"] += 1
        by_reason[str(event.details.get("reason") or event.event_type.value)] += 1
        if event.account_id is not None:
            by_user[str(event.account_id)] += 1
        seconds = event.details.get("duration_seconds")
        if isinstance(seconds, (int, float)) and seconds > 0:
            durations.append(float(seconds))

    sources = Counter(
        e.ip_address
        for e in events
        if e.ip_address
        and (e.event_type in LOCK_EVENT_TYPES or e.event_type is SecurityEventType.FAILED_LOGIN)
    )

    report.lockouts_by_day = dict(sorted(by_day.items()))
    report.lockouts_by_hour = dict(sorted(by_hour.items()))
    report.lockouts_by_reason = dict(by_reason.most_common())
    report.top_locked_users = [user for user, _ in by_user.most_common(TOP_N)]
    report.top_source_ips = [ip for ip, _ in sources.most_common(TOP_N)]
    report.average_lockout_duration = (
        timedelta(seconds=sum(durations) / len(durations))
        if durations
        else (config.lockout_duration if lock_events else timedelta(0))
    )


__all__ = ["HISTORY_LOOKBACK", "LockoutReporting"]
