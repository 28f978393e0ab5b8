# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

from prometheus_client import Counter, Histogram

from account_guard.shared.config import load_config

FAILED_ATTEMPTS = Counter(
    "account_guard_failed_attempts_total",
    "Failed login attempts recorded",
    labelnames=("known_account",),
)
LOCKOUTS = Counter(
    "account_guard_lockouts_total",
    "Account lockouts applied",
    labelnames=("kind",),
)
UNLOCKS = Counter(
    "account_guard_unlocks_total",
    "Account lockouts released",
    labelnames=("kind",),
)
IP_BLOCKS = Counter(
    "account_guard_ip_blocks_total",
    "Source addresses blocked",
    labelnames=("kind",),
)
DEGRADED = Counter(
    "account_guard_degraded_total",
    "Operations answered from the failure policy instead of the store",
    labelnames=("operation", "mode"),
)
OPERATION_LATENCY = Histogram(
    "account_guard_operation_latency_seconds",
    "Lockout engine operation latency",
    labelnames=("operation",),
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)


def _enabled() -> bool:
    return load_config().observability.metrics_enabled


def record_failed_attempt(known_account: bool) -> None:
    if _enabled():
        FAILED_ATTEMPTS.labels(known_account=str(known_account).lower()).inc()


def record_lockout(kind: str) -> None:
    if _enabled():
        LOCKOUTS.labels(kind=kind).inc()


def record_unlock(kind: str, count: int = 1) -> None:
    if _enabled() and count:
        UNLOCKS.labels(kind=kind).inc(count)


def record_ip_block(kind: str) -> None:
    if _enabled():
        IP_BLOCKS.labels(kind=kind).inc()


def record_degraded(operation: str, mode: str) -> None:
    if _enabled():
        DEGRADED.labels(operation=operation, mode=mode).inc()


@contextmanager
def track_latency(operation: str) -> Iterator[None]:
    if not _enabled():
        yield
        return

    start = time.perf_counter()
    try:
        yield
    finally:
        OPERATION_LATENCY.labels(operation=operation).observe(time.perf_counter() - start)


__all__ = [
    "DEGRADED",
    "FAILED_ATTEMPTS",
    "IP_BLOCKS",
    "LOCKOUTS",
    "OPERATION_LATENCY",
    "UNLOCKS",
    "record_degraded",
    "record_failed_attempt",
    "record_ip_block",
    "record_lockout",
    "record_unlock",
    "track_latency",
]
