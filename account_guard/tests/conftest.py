from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

import pytest

from account_guard.application.services.lockout_engine import AccountLockoutEngine
from account_guard.domain.lockout import (
    AccountIdentity,
    AccountLockoutState,
    AccountUpdate,
    LockoutResult,
    SecurityEvent,
    SecurityEventType,
    normalize_email,
)
from account_guard.infrastructure.cache import InMemoryTTLCache
from account_guard.shared.config import AppConfig, LockoutEngineConfig, ResilienceConfig
from account_guard.shared.errors import ConcurrencyConflictError, StorageError

START = datetime(2025, 1, 6, 12, 0, tzinfo=UTC)


class ManualClock:
    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta

    def monotonic(self) -> float:
        return self.now.timestamp()


class InMemoryAccountStore:
    """Versioned account store with failure and conflict injection."""

    def __init__(self) -> None:
        self._accounts: dict[int, AccountLockoutState] = {}
        self._seq = 1
        self.fail_with: Exception | None = None
        self.conflicts_to_inject = 0
        self.fail_updates_for: set[int] = set()
        self.delay = 0.0
        self.updates: list[AccountUpdate] = []

    def add(self, email: str, **kwargs: Any) -> AccountLockoutState:
        account = AccountLockoutState(id=self._seq, email=email, **kwargs)
        self._accounts[account.id] = account
        self._seq += 1
        return account

    def get(self, account_id: int) -> AccountLockoutState:
        return self._accounts[account_id]

    def _lookup(self, identity: AccountIdentity) -> AccountLockoutState | None:
        if isinstance(identity, int):
            return self._accounts.get(identity)
        wanted = normalize_email(identity)
        for account in self._accounts.values():
            if account.normalized_email == wanted:
                return account
        return None

    async def _check(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with

    async def get_by_identity(self, identity: AccountIdentity) -> AccountLockoutState | None:
        await self._check()
        return self._lookup(identity)

    async def update(self, update: AccountUpdate) -> AccountLockoutState:
        await self._check()
        if update.account_id in self.fail_updates_for:
            raise StorageError("accounts.update")
        current = self._accounts[update.account_id]
        if self.conflicts_to_inject > 0:
            # Another writer bumps the version between our read and write.
            self.conflicts_to_inject -= 1
            self._accounts[current.id] = AccountUpdate(
                account_id=current.id,
                expected_version=current.version,
                failed_login_attempts=current.failed_login_attempts,
                lockout_end=current.lockout_end,
            ).apply_to(current)
            raise ConcurrencyConflictError(update.account_id, update.expected_version)
        if current.version != update.expected_version:
            raise ConcurrencyConflictError(update.account_id, update.expected_version)
        updated = update.apply_to(current)
        self._accounts[current.id] = updated
        self.updates.append(update)
        return updated

    async def get_locked_out_accounts(self) -> Sequence[AccountLockoutState]:
        await self._check()
        return [a for a in self._accounts.values() if a.lockout_end is not None]

    async def get_accounts_with_failed_attempts(
        self, min_attempts: int
    ) -> Sequence[AccountLockoutState]:
        await self._check()
        return [a for a in self._accounts.values() if a.failed_login_attempts >= min_attempts]


class StaticConfigurationProvider:
    def __init__(self, values: dict[str, Any] | None = None) -> None:
        self.values: dict[str, Any] = dict(values or {})
        self.fail_with: Exception | None = None

    async def get_configuration(self, category: str, key: str, default: Any) -> Any:
        if self.fail_with is not None:
            raise self.fail_with
        return self.values.get(key, default)

    async def set_configuration(self, category: str, key: str, value: Any) -> None:
        self.values[key] = value


class RecordingEventSink:
    def __init__(self, clock: ManualClock) -> None:
        self._clock = clock
        self.events: list[SecurityEvent] = []

    async def record(
        self,
        event_type: SecurityEventType,
        *,
        account_id: int | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.events.append(
            SecurityEvent(
                event_id=uuid4().hex,
                event_type=event_type,
                timestamp=self._clock(),
                account_id=account_id,
                ip_address=ip_address,
                user_agent=user_agent,
                details=dict(details or {}),
            )
        )

    async def list_events(
        self,
        *,
        since: datetime,
        until: datetime | None = None,
        account_id: int | None = None,
        event_types: Sequence[SecurityEventType] | None = None,
    ) -> Sequence[SecurityEvent]:
        selected = [
            e
            for e in self.events
            if e.timestamp >= since
            and (until is None or e.timestamp <= until)
            and (account_id is None or e.account_id == account_id)
            and (not event_types or e.event_type in event_types)
        ]
        return sorted(selected, key=lambda e: e.timestamp, reverse=True)

    def of_type(self, event_type: SecurityEventType) -> list[SecurityEvent]:
        return [e for e in self.events if e.event_type is event_type]


class RecordingNotifications:
    def __init__(self) -> None:
        self.user: list[tuple[int, LockoutResult]] = []
        self.admin: list[tuple[int, LockoutResult]] = []

    async def send_lockout_notification(self, account_id: int, result: LockoutResult) -> None:
        self.user.append((account_id, result))

    async def send_admin_lockout_notification(
        self, account_id: int, result: LockoutResult
    ) -> None:
        self.admin.append((account_id, result))


class InMemoryKnownDevices:
    def __init__(self) -> None:
        self.devices: set[tuple[int, str]] = set()

    async def is_known(self, account_id: int, fingerprint: str) -> bool:
        return (account_id, fingerprint) in self.devices

    async def remember(self, account_id: int, fingerprint: str) -> None:
        self.devices.add((account_id, fingerprint))


class StagedWrites:
    def __init__(self) -> None:
        self.staged: list[AccountUpdate] = []
        self.callbacks: list[Callable[[], None]] = []

    def stage(self, update: AccountUpdate) -> None:
        self.staged.append(update)

    def after_commit(self, callback: Callable[[], None]) -> None:
        self.callbacks.append(callback)

    async def commit(self, accounts: InMemoryAccountStore) -> None:
        for update in self.staged:
            await accounts.update(update)
        callbacks, self.callbacks = self.callbacks, []
        for callback in callbacks:
            callback()


def make_settings(failure_mode: str = "fail-open", conflict_retries: int = 3) -> AppConfig:
    return AppConfig(
        lockout=LockoutEngineConfig(failure_mode=failure_mode),
        resilience=ResilienceConfig(
            operation_timeout=1.0,
            conflict_retries=conflict_retries,
            backoff_base=0.0,
            backoff_cap=0.0,
        ),
    )


@dataclass
class Harness:
    clock: ManualClock
    accounts: InMemoryAccountStore
    configuration: StaticConfigurationProvider
    cache: InMemoryTTLCache
    events: RecordingEventSink
    notifications: RecordingNotifications
    devices: InMemoryKnownDevices
    engine: AccountLockoutEngine


def build_harness(
    config_values: dict[str, Any] | None = None,
    *,
    failure_mode: str = "fail-open",
    conflict_retries: int = 3,
    with_history: bool = True,
) -> Harness:
    clock = ManualClock()
    accounts = InMemoryAccountStore()
    configuration = StaticConfigurationProvider(config_values)
    cache: InMemoryTTLCache = InMemoryTTLCache(clock=clock.monotonic)
    events = RecordingEventSink(clock)
    notifications = RecordingNotifications()
    devices = InMemoryKnownDevices()
    engine = AccountLockoutEngine(
        accounts=accounts,
        configuration=configuration,
        cache=cache,
        events=events,
        notifications=notifications,
        known_devices=devices,
        event_history=events if with_history else None,
        settings=make_settings(failure_mode, conflict_retries),
        clock=clock,
    )
    return Harness(
        clock=clock,
        accounts=accounts,
        configuration=configuration,
        cache=cache,
        events=events,
        notifications=notifications,
        devices=devices,
        engine=engine,
    )


@pytest.fixture()
def harness() -> Harness:
    return build_harness()


@pytest.fixture()
def harness_factory():
    return build_harness


@pytest.fixture()
def staged_writes() -> StagedWrites:
    return StagedWrites()
