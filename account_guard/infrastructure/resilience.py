# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""Resilience utilities (timeouts, conflict retries, circuit breaker)."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from account_guard.shared.config.settings import ResilienceConfig
from account_guard.shared.errors import ConcurrencyConflictError, StorageError
from account_guard.shared.logging import logger

T = TypeVar("T")


class CircuitOpenError(StorageError):
    def __init__(self, name: str) -> None:
        super().__init__("circuit_open", context={"dependency": name})


@dataclass
class CircuitBreaker:
    """Simple in-memory circuit breaker."""

    failure_threshold: int
    reset_timeout: float
    name: str = "dependency"
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    def __post_init__(self) -> None:
        self._failures = 0
        self._opened_at: float | None = None

    @classmethod
    def from_config(cls, config: ResilienceConfig, name: str) -> CircuitBreaker:
        return cls(
            failure_threshold=config.circuit_fail_threshold,
            reset_timeout=config.circuit_reset_timeout,
            name=name,
        )

    @property
    def is_open(self) -> bool:
        return self._opened_at is not None

    def allow(self) -> bool:
        if self._opened_at is None:
            return True
        if self.clock() - self._opened_at >= self.reset_timeout:
            logger.info(f"breaker[{self.name}]: half-open state")
            self._opened_at = None
            self._failures = self.failure_threshold - 1
            return True
        logger.warning(f"breaker[{self.name}]: open state refusing call")
        return False

    def on_success(self) -> None:
        self._failures = 0
        self._opened_at = None

    def on_failure(self) -> None:
        self._failures += 1
        if self._failures >= self.failure_threshold and self._opened_at is None:
            self._opened_at = self.clock()
            logger.error(f"breaker[{self.name}]: opening circuit after {self._failures} failures")


async def guarded_call(  # noqa: UP047
    func: Callable[..., Awaitable[T]],
    *args: Any,
    breaker: CircuitBreaker | None = None,
    timeout: float | None = None,
    **kwargs: Any,
) -> T:
    """Run ``func`` under an optional timeout and circuit breaker.

    A version conflict is a healthy answer from the store and does not count
    against the breaker.
    """

    if breaker is not None and not breaker.allow():
        raise CircuitOpenError(breaker.name)

    try:
        if timeout is None:
            result = await func(*args, **kwargs)
        else:
            result = await asyncio.wait_for(func(*args, **kwargs), timeout=timeout)
    except ConcurrencyConflictError:
        if breaker is not None:
            breaker.on_success()
        raise
    except Exception:
        if breaker is not None:
            breaker.on_failure()
        raise

    if breaker is not None:
        breaker.on_success()
    return result


async def retry_on_conflict(  # noqa: UP047
    operation: Callable[[], Awaitable[T]],
    *,
    retries: int,
    backoff_base: float = 0.01,
    backoff_cap: float = 0.2,
) -> T:
    """Re-run a read-modify-write ``operation`` while the store reports conflicts.

    ``operation`` must re-read its input on every call. The final
    ``ConcurrencyConflictError`` propagates once ``retries`` are exhausted.
    """

    retry = AsyncRetrying(
        stop=stop_after_attempt(retries + 1),
        wait=wait_exponential(multiplier=backoff_base, max=backoff_cap),
        retry=retry_if_exception_type(ConcurrencyConflictError),
        reraise=True,
    )

    async for attempt in retry:
        with attempt:
            number = attempt.retry_state.attempt_number
            if number > 1:
                logger.debug(f"resilience: conflict retry attempt={number}")
            return await operation()
    raise RuntimeError("resilience: reached unexpected branch")


__all__ = ["CircuitBreaker", "CircuitOpenError", "guarded_call", "retry_on_conflict"]
