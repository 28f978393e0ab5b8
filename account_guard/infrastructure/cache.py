# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from datetime import timedelta
from threading import Lock
from typing import Generic, TypeVar

from account_guard.shared.logging import logger

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(slots=True)
class CacheEntry(Generic[V]):  # noqa: UP046
    value: V
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class InMemoryTTLCache(Generic[K, V]):  # noqa: UP046
    """Process-local cache with a TTL per entry.

    ``clock`` must be monotonic; tests inject a manual one.
    """

    def __init__(
        self,
        default_ttl: timedelta = timedelta(minutes=30),
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_ttl = default_ttl
        self._clock = clock
        self._lock = Lock()
        self._store: dict[K, CacheEntry[V]] = {}

    def get(self, key: K) -> V | None:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                self._store.pop(key, None)
                logger.debug(f"cache: expired key={key}")
                return None
            logger.debug(f"cache: hit key={key}")
            return entry.value

    def set(self, key: K, value: V, ttl: timedelta | None = None) -> None:
        seconds = (ttl if ttl is not None else self._default_ttl).total_seconds()
        if seconds <= 0:
            self.invalidate(key)
            return
        with self._lock:
            self._store[key] = CacheEntry(value=value, expires_at=self._clock() + seconds)

    def get_or_set(self, key: K, factory: Callable[[], V], ttl: timedelta | None = None) -> V:
        cached = self.get(key)
        if cached is not None:
            return cached

        logger.debug(f"cache: miss key={key}")
        value = factory()
        self.set(key, value, ttl)
        return value

    def update(self, key: K, func: Callable[[V | None], tuple[V, timedelta]]) -> V:
        """Atomically replace an entry with ``func(current)``.

        ``func`` returns the new value and its TTL and runs under the cache
        lock, so it must not block.
        """

        with self._lock:
            now = self._clock()
            entry = self._store.get(key)
            current = entry.value if entry and not entry.is_expired(now) else None
            value, ttl = func(current)
            self._store[key] = CacheEntry(value=value, expires_at=now + ttl.total_seconds())
            return value

    def invalidate(self, key: K) -> None:
        with self._lock:
            if key in self._store:
                logger.debug(f"cache: invalidate key={key}")
                self._store.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            logger.debug("cache: clear all keys")
            self._store.clear()

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._store.items() if entry.is_expired(now)]
            for key in expired:
                del self._store[key]
        if expired:
            logger.debug(f"cache: purged {len(expired)} expired keys")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


__all__ = ["CacheEntry", "InMemoryTTLCache"]
