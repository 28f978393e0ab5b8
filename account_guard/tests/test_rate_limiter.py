from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from account_guard.application.use_cases.lockout.rate_limiter import ip_in_ranges
from account_guard.domain.lockout import SecurityEventType

IP = "198.51.100.7"


async def _fail(harness, times: int, ip: str = IP) -> None:
    for _ in range(times):
        await harness.engine.record_failed_attempt("ghost@example.com", ip)


def test_counter_uses_a_fixed_window(harness) -> None:
    async def scenario() -> list[int]:
        counts = []
        await _fail(harness, 1)
        harness.clock.advance(timedelta(minutes=10))
        await _fail(harness, 1)
        counts.append(await harness.engine.get_failed_attempts_by_ip(IP))
        # The window opened by the first failure closes at minute 15.
        harness.clock.advance(timedelta(minutes=6))
        counts.append(await harness.engine.get_failed_attempts_by_ip(IP))
        await _fail(harness, 1)
        counts.append(await harness.engine.get_failed_attempts_by_ip(IP))
        return counts

    assert asyncio.run(scenario()) == [2, 0, 1]


def test_threshold_places_one_automatic_block(harness_factory) -> None:
    harness = harness_factory({"MaxFailedAttemptsPerIp": 3})

    async def scenario():
        await _fail(harness, 5)
        return await harness.engine.check_ip_rate_limit(IP)

    status = asyncio.run(scenario())

    assert status.is_rate_limited
    assert status.is_blocked
    assert status.retry_after == timedelta(minutes=30)
    assert status.current_attempts == 5
    blocks = harness.events.of_type(SecurityEventType.IP_BLOCKED)
    assert len(blocks) == 1
    assert blocks[0].details["automatic"] is True


def test_threshold_without_blocking_limits_until_window_end(harness_factory) -> None:
    harness = harness_factory({"MaxFailedAttemptsPerIp": 3, "EnableIpBlocking": False})

    async def scenario():
        await _fail(harness, 3)
        harness.clock.advance(timedelta(minutes=5))
        return await harness.engine.check_ip_rate_limit(IP)

    status = asyncio.run(scenario())

    assert status.is_rate_limited
    assert not status.is_blocked
    assert status.retry_after == timedelta(minutes=10)
    assert harness.events.of_type(SecurityEventType.IP_BLOCKED) == []


def test_trusted_ranges_are_never_counted(harness_factory) -> None:
    harness = harness_factory({"MaxFailedAttemptsPerIp": 2, "TrustedIpRanges": "10.0.0.0/8"})

    async def scenario():
        await _fail(harness, 5, "10.1.2.3")
        return await harness.engine.check_ip_rate_limit("10.1.2.3")

    status = asyncio.run(scenario())

    assert not status.is_rate_limited
    assert status.current_attempts == 0


def test_blocked_ranges_are_always_limited(harness_factory) -> None:
    harness = harness_factory({"BlockedIpRanges": ["192.0.2.0/24", "2001:db8::/32"]})

    ipv4 = asyncio.run(harness.engine.check_ip_rate_limit("192.0.2.55"))
    ipv6 = asyncio.run(harness.engine.check_ip_rate_limit("2001:db8::1"))

    assert ipv4.is_rate_limited and ipv4.is_blocked
    assert ipv6.is_rate_limited and ipv6.is_blocked
    assert ipv4.current_attempts == 0


def test_manual_block_and_unblock(harness) -> None:
    async def scenario():
        await _fail(harness, 2)
        assert await harness.engine.block_ip_address(IP, "Credential stuffing", timedelta(hours=1))
        blocked = await harness.engine.check_ip_rate_limit(IP)
        assert await harness.engine.unblock_ip_address(IP, "False positive", unblocked_by=4)
        released = await harness.engine.check_ip_rate_limit(IP)
        return blocked, released

    blocked, released = asyncio.run(scenario())

    assert blocked.is_blocked
    assert blocked.next_allowed_time == harness.clock.now + timedelta(hours=1)
    assert not released.is_rate_limited
    assert released.current_attempts == 0
    assert len(harness.events.of_type(SecurityEventType.IP_UNBLOCKED)) == 1


def test_manual_block_expires(harness) -> None:
    async def scenario():
        await harness.engine.block_ip_address(IP, "Abuse", timedelta(minutes=20))
        harness.clock.advance(timedelta(minutes=20))
        return await harness.engine.check_ip_rate_limit(IP)

    assert not asyncio.run(scenario()).is_rate_limited


@pytest.mark.parametrize(
    ("ip", "duration"),
    [("not-an-ip", timedelta(hours=1)), (IP, timedelta(0)), (IP, timedelta(minutes=-1))],
)
def test_invalid_block_requests_are_refused(harness, ip: str, duration: timedelta) -> None:
    assert asyncio.run(harness.engine.block_ip_address(ip, "Abuse", duration)) is False
    assert harness.events.events == []


def test_unblock_rejects_invalid_address(harness) -> None:
    assert asyncio.run(harness.engine.unblock_ip_address("300.1.1.1", "typo")) is False


def test_failures_without_address_skip_ip_counting(harness) -> None:
    harness.accounts.add("user@example.com")

    result = asyncio.run(harness.engine.record_failed_attempt("user@example.com"))

    assert result.failed_attempts == 1
    assert len(harness.cache) == 0


def test_range_matching_ignores_malformed_entries() -> None:
    ranges = ("bogus", "203.0.113.0/24")

    assert ip_in_ranges("203.0.113.9", ranges)
    assert not ip_in_ranges("198.51.100.1", ranges)
    assert not ip_in_ranges("garbage", ranges)
    assert not ip_in_ranges("203.0.113.9", ())
