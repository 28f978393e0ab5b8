# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Protocol

from .entities import AccountIdentity, AccountLockoutState, AccountUpdate


class AccountStore(Protocol):
    """User-record store holding the persisted lockout counters.

    ``update`` is a compare-and-set on ``AccountUpdate.expected_version`` and
    raises ``ConcurrencyConflictError`` when another writer got there first.
    """

    async def get_by_identity(self, identity: AccountIdentity) -> AccountLockoutState | None: ...

    async def update(self, update: AccountUpdate) -> AccountLockoutState: ...

    async def get_locked_out_accounts(self) -> Sequence[AccountLockoutState]:
        """Accounts with ``lockout_end`` set, including ones whose lock has ended."""
        ...

    async def get_accounts_with_failed_attempts(
        self, min_attempts: int
    ) -> Sequence[AccountLockoutState]: ...


class StagedAccountWrites(Protocol):
    """Caller-owned transaction that accepts account writes for a later commit.

    ``after_commit`` callbacks run once the transaction commits and are
    discarded on rollback.
    """

    def stage(self, update: AccountUpdate) -> None: ...

    def after_commit(self, callback: Callable[[], None]) -> None: ...


class KnownDeviceStore(Protocol):
    async def is_known(self, account_id: int, fingerprint: str) -> bool: ...

    async def remember(self, account_id: int, fingerprint: str) -> None: ...
