# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""Account-independent throttling keyed by source address.

Failures are counted in fixed windows of ``failed_attempt_window``: the first
failure opens a window, later failures inside it only bump the count, and the
cache entry expires at the window end. Administrative and automatic blocks
live under a separate key with their own expiry.
"""

from __future__ import annotations

import ipaddress
from datetime import datetime, timedelta
from functools import lru_cache

from account_guard.domain.lockout import (
    IpAttemptWindow,
    IpBlock,
    LockoutConfiguration,
    RateLimitStatus,
    SecurityEventType,
)
from account_guard.infrastructure import observability
from account_guard.shared.logging import logger

from .context import LockoutContext

IP_ATTEMPTS_PREFIX = "ip_attempts:"
IP_BLOCK_PREFIX = "ip_block:"
AUTOMATIC_BLOCK_REASON = "Too many failed login attempts from this address"

Network = ipaddress.IPv4Network | ipaddress.IPv6Network


@lru_cache(maxsize=256)
def _parse_ranges(ranges: tuple[str, ...]) -> tuple[Network, ...]:
    networks = []
    for entry in ranges:
        try:
            networks.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            logger.warning(f"rate limiter: ignoring invalid address range {entry!r}")
    return tuple(networks)


def ip_in_ranges(ip_address: str, ranges: tuple[str, ...]) -> bool:
    if not ranges:
        return False
    try:
        address = ipaddress.ip_address(ip_address)
    except ValueError:
        return False
    return any(address in network for network in _parse_ranges(ranges))


def _is_valid_ip(ip_address: str) -> bool:
    try:
        ipaddress.ip_address(ip_address)
    except ValueError:
        return False
    return True


class IpRateLimiter:
    def __init__(self, context: LockoutContext) -> None:
        self._ctx = context

    async def check_ip_rate_limit(
        self, ip_address: str, *, timeout: float | None = None
    ) -> RateLimitStatus:
        try:
            config = await self._ctx.load_config(timeout)
        except Exception as exc:
            closed = self._ctx.degrade("check_ip_rate_limit", exc)
            return RateLimitStatus(is_rate_limited=closed)
        return self.evaluate(ip_address, config)

    async def get_failed_attempts_by_ip(self, ip_address: str) -> int:
        window = self._current_window(ip_address, self._ctx.now())
        return window.count if window else 0

    def evaluate(self, ip_address: str | None, config: LockoutConfiguration) -> RateLimitStatus:
        now = self._ctx.now()
        status = RateLimitStatus(
            max_attempts=config.max_failed_attempts_per_ip,
            window_duration=config.failed_attempt_window,
        )
        if not ip_address or ip_in_ranges(ip_address, config.trusted_ip_ranges):
            return status

        if ip_in_ranges(ip_address, config.blocked_ip_ranges):
            status.is_rate_limited = True
            status.is_blocked = True
            return status

        window = self._current_window(ip_address, now)
        if window is not None:
            status.current_attempts = window.count
            status.window_start = window.window_start

        block = self._current_block(ip_address, now)
        if block is not None:
            status.is_rate_limited = True
            status.is_blocked = True
            status.next_allowed_time = block.expires_at
            status.retry_after = block.expires_at - now
        elif window is not None and window.count >= config.max_failed_attempts_per_ip:
            status.is_rate_limited = True
            status.next_allowed_time = window.window_end
            status.retry_after = window.window_end - now
        return status

    async def register_failure(self, ip_address: str | None, config: LockoutConfiguration) -> int:
        """Count one failed attempt from ``ip_address`` and auto-block at the threshold."""

        if not ip_address or ip_in_ranges(ip_address, config.trusted_ip_ranges):
            return 0

        now = self._ctx.now()
        window_length = config.failed_attempt_window

        def bump(current: object | None) -> tuple[IpAttemptWindow, timedelta]:
            if isinstance(current, IpAttemptWindow) and current.window_end > now:
                updated = IpAttemptWindow(
                    count=current.count + 1,
                    window_start=current.window_start,
                    window_end=current.window_end,
                )
            else:
                updated = IpAttemptWindow(count=1, window_start=now, window_end=now + window_length)
            return updated, updated.window_end - now

        window = self._ctx.cache.update(f"{IP_ATTEMPTS_PREFIX}{ip_address}", bump)
        logger.debug(f"rate limiter: ip={ip_address} attempts={window.count}")

        if config.enable_ip_blocking and window.count >= config.max_failed_attempts_per_ip:
            block = self._place_block(
                ip_address, AUTOMATIC_BLOCK_REASON, config.ip_block_duration, now
            )
            if block is not None:
                observability.record_ip_block("automatic")
                logger.warning(f"rate limiter: ip={ip_address} blocked until {block.expires_at}")
                await self._ctx.emit(
                    SecurityEventType.IP_BLOCKED,
                    ip_address=ip_address,
                    details={"reason": block.reason, "automatic": True, "attempts": window.count},
                )
        return window.count

    async def block_ip_address(
        self,
        ip_address: str,
        reason: str,
        duration: timedelta,
        *,
        blocked_by: int | None = None,
    ) -> bool:
        if not _is_valid_ip(ip_address) or duration <= timedelta(0):
            logger.warning(f"rate limiter: refusing block ip={ip_address!r} duration={duration}")
            return False

        now = self._ctx.now()
        block = IpBlock(
            ip_address=ip_address, reason=reason, blocked_at=now, expires_at=now + duration
        )
        self._ctx.cache.set(f"{IP_BLOCK_PREFIX}{ip_address}", block, duration)
        observability.record_ip_block("manual")
        logger.warning(f"rate limiter: ip={ip_address} blocked for {duration} ({reason})")
        await self._ctx.emit(
            SecurityEventType.IP_BLOCKED,
            account_id=blocked_by,
            ip_address=ip_address,
            details={
                "reason": reason,
                "automatic": False,
                "duration_seconds": duration.total_seconds(),
            },
        )
        return True

    async def unblock_ip_address(
        self, ip_address: str, reason: str, *, unblocked_by: int | None = None
    ) -> bool:
        if not _is_valid_ip(ip_address):
            return False

        # The counter goes too, otherwise the address is throttled again at once.
        self._ctx.cache.invalidate(f"{IP_BLOCK_PREFIX}{ip_address}")
        self._ctx.cache.invalidate(f"{IP_ATTEMPTS_PREFIX}{ip_address}")
        logger.info(f"rate limiter: ip={ip_address} unblocked ({reason})")
        await self._ctx.emit(
            SecurityEventType.IP_UNBLOCKED,
            account_id=unblocked_by,
            ip_address=ip_address,
            details={"reason": reason},
        )
        return True

    def _place_block(
        self, ip_address: str, reason: str, duration: timedelta, now: datetime
    ) -> IpBlock | None:
        """Place a block unless one is already active; returns the new block."""

        placed: list[IpBlock] = []

        def place(current: object | None) -> tuple[IpBlock, timedelta]:
            if isinstance(current, IpBlock) and current.expires_at > now:
                return current, current.expires_at - now
            block = IpBlock(
                ip_address=ip_address, reason=reason, blocked_at=now, expires_at=now + duration
            )
            placed.append(block)
            return block, duration

        self._ctx.cache.update(f"{IP_BLOCK_PREFIX}{ip_address}", place)
        return placed[0] if placed else None

    def _current_window(self, ip_address: str, now: datetime) -> IpAttemptWindow | None:
        window = self._ctx.cache.get(f"{IP_ATTEMPTS_PREFIX}{ip_address}")
        if isinstance(window, IpAttemptWindow) and window.window_end > now:
            return window
        return None

    def _current_block(self, ip_address: str, now: datetime) -> IpBlock | None:
        block = self._ctx.cache.get(f"{IP_BLOCK_PREFIX}{ip_address}")
        if isinstance(block, IpBlock) and block.expires_at > now:
            return block
        return None


__all__ = [
    "AUTOMATIC_BLOCK_REASON",
    "IP_ATTEMPTS_PREFIX",
    "IP_BLOCK_PREFIX",
    "IpRateLimiter",
    "ip_in_ranges",
]
