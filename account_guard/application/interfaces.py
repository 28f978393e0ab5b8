# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Protocol, TypeVar

from account_guard.domain.lockout import (
    AccountIdentity,
    LockoutResult,
    SecurityEvent,
    SecurityEventType,
)

T = TypeVar("T")


class ConfigurationProvider(Protocol):
    """Dynamic configuration lookup; must return ``default`` for missing keys."""

    async def get_configuration(self, category: str, key: str, default: T) -> T: ...


class WritableConfigurationProvider(ConfigurationProvider, Protocol):
    async def set_configuration(self, category: str, key: str, value: Any) -> None: ...


class CachePort(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl: timedelta) -> None: ...

    def update(self, key: str, func: Callable[[Any | None], tuple[Any, timedelta]]) -> Any:
        """Atomic read-modify-write; ``func`` must not block or await."""
        ...

    def invalidate(self, key: str) -> None: ...

    def clear(self) -> None: ...

    def purge_expired(self) -> int: ...


class NotificationPort(Protocol):
    async def send_lockout_notification(self, account_id: int, result: LockoutResult) -> None: ...

    async def send_admin_lockout_notification(
        self, account_id: int, result: LockoutResult
    ) -> None: ...


class SecurityEventSink(Protocol):
    async def record(
        self,
        event_type: SecurityEventType,
        *,
        account_id: int | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None: ...


class SecurityEventQuery(Protocol):
    async def list_events(
        self,
        *,
        since: datetime,
        until: datetime | None = None,
        account_id: int | None = None,
        event_types: Sequence[SecurityEventType] | None = None,
    ) -> Sequence[SecurityEvent]: ...


class SessionRevoker(Protocol):
    async def revoke_all_for_account(self, account_id: int) -> int: ...

    async def issue_for_account(self, account_id: int) -> str: ...


@dataclass(slots=True, frozen=True)
class Credentials:
    account_id: int
    password_hash: str


class CredentialStore(Protocol):
    async def find_credentials(self, identity: AccountIdentity) -> Credentials | None: ...


class PasswordHasher(Protocol):
    def hash(self, password: str) -> str: ...

    def verify(self, password: str, hashed: str) -> bool: ...
