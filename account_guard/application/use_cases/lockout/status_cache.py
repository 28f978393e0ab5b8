# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from threading import Lock

from account_guard.application.interfaces import CachePort
from account_guard.domain.lockout import (
    AccountIdentity,
    AccountLockoutState,
    LockoutStatus,
    normalize_email,
)
from account_guard.shared.logging import logger

STATUS_PREFIX = "lockout_status:"


def status_key(identity: AccountIdentity) -> str:
    if isinstance(identity, int):
        return f"{STATUS_PREFIX}{identity}"
    return f"{STATUS_PREFIX}{normalize_email(identity)}"


class LockoutStatusCache:
    """Memoized ``LockoutStatus`` reachable by account id and by e-mail.

    Both keys are written and dropped together. A cached lock never outlives
    its ``lockout_end``: the entry TTL is clamped to the remaining lock time.

    Store reads run inside ``reading()``. A ``put`` carrying that read's token
    is dropped when either key was invalidated after the read began, so a
    snapshot taken before a lock, unlock or reset is never cached after it.
    """

    def __init__(self, cache: CachePort, ttl: timedelta = timedelta(minutes=30)) -> None:
        self._cache = cache
        self._ttl = ttl
        self._lock = Lock()
        self._epoch = 0
        self._readers: set[int] = set()
        # key -> epoch of its last invalidation, kept only while reads are in flight
        self._invalidated: dict[str, int] = {}

    def get(self, identity: AccountIdentity, now: datetime) -> LockoutStatus | None:
        cached = self._cache.get(status_key(identity))
        if not isinstance(cached, LockoutStatus):
            return None
        if cached.lockout_end is not None and cached.lockout_end <= now:
            return None
        return cached

    @contextmanager
    def reading(self) -> Iterator[int]:
        with self._lock:
            self._epoch += 1
            token = self._epoch
            self._readers.add(token)
        try:
            yield token
        finally:
            with self._lock:
                self._readers.discard(token)
                oldest = min(self._readers, default=None)
                if oldest is None:
                    self._invalidated.clear()
                else:
                    self._invalidated = {
                        key: epoch for key, epoch in self._invalidated.items() if epoch > oldest
                    }

    def put(
        self,
        account: AccountLockoutState,
        status: LockoutStatus,
        now: datetime,
        *,
        token: int | None = None,
    ) -> bool:
        ttl = self._ttl
        if status.lockout_end is not None:
            ttl = min(ttl, status.lockout_end - now)
        if ttl <= timedelta(0):
            return False
        keys = self._keys_for(account.id, account.email)
        with self._lock:
            if token is not None and any(self._invalidated.get(k, 0) > token for k in keys):
                logger.debug(f"status-cache: dropped stale snapshot for account {account.id}")
                return False
            for key in keys:
                self._cache.set(key, status, ttl)
        return True

    def invalidate(self, account_id: int | None = None, email: str | None = None) -> None:
        keys = self._keys_for(account_id, email)
        with self._lock:
            if self._readers:
                self._epoch += 1
                for key in keys:
                    self._invalidated[key] = self._epoch
            for key in keys:
                self._cache.invalidate(key)

    def invalidate_account(self, account: AccountLockoutState) -> None:
        self.invalidate(account.id, account.email)

    @staticmethod
    def _keys_for(account_id: int | None, email: str | None) -> list[str]:
        keys = []
        if account_id is not None:
            keys.append(status_key(account_id))
        if email:
            keys.append(status_key(email))
        return keys


__all__ = ["LockoutStatusCache", "STATUS_PREFIX", "status_key"]
