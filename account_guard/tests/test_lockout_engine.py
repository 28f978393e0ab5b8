from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from account_guard.application.use_cases.lockout import DEGRADED_WARNING, FAIL_CLOSED_REASON
from account_guard.domain.lockout import LockoutConfiguration, SecurityEventType
from account_guard.shared.errors import StorageError


def test_failed_attempts_never_decrease_and_freeze_once_locked(harness) -> None:
    account = harness.accounts.add("user@example.com")

    async def scenario() -> list[int]:
        counts = []
        for _ in range(9):
            await harness.engine.record_failed_attempt(account.id, "198.51.100.7")
            counts.append(harness.accounts.get(account.id).failed_login_attempts)
        return counts

    counts = asyncio.run(scenario())

    assert counts == sorted(counts)
    assert counts == [1, 2, 3, 4, 5, 5, 5, 5, 5]


def test_progressive_lockout_escalates_across_lock_cycles(harness) -> None:
    account = harness.accounts.add("user@example.com")

    async def fail() -> timedelta | None:
        result = await harness.engine.record_failed_attempt(account.id)
        return result.lockout_duration if result.is_locked_out else None

    async def scenario() -> list[timedelta | None]:
        durations = [await fail() for _ in range(5)]
        for _ in range(2):
            harness.clock.advance(durations[-1] + timedelta(seconds=1))
            durations.append(await fail())
        return durations

    durations = asyncio.run(scenario())

    assert durations[:4] == [None, None, None, None]
    assert durations[4:] == [timedelta(minutes=5), timedelta(minutes=15), timedelta(hours=1)]
    assert asyncio.run(harness.engine.get_lockout_duration(7)) == timedelta(hours=1)


def test_unlock_twice_is_idempotent(harness) -> None:
    account = harness.accounts.add("user@example.com")

    async def scenario() -> tuple[bool, bool]:
        await harness.engine.lock_account(account.id, "Manual review", timedelta(hours=1), 99)
        first = await harness.engine.unlock_account(account.id, "Reviewed", 99)
        writes = len(harness.accounts.updates)
        second = await harness.engine.unlock_account(account.id, "Reviewed again", 99)
        assert len(harness.accounts.updates) == writes
        return first, second

    first, second = asyncio.run(scenario())

    assert first is True
    assert second is True
    assert harness.accounts.get(account.id).lockout_end is None
    assert len(harness.events.of_type(SecurityEventType.MANUAL_UNLOCK)) == 2


def test_successful_login_resets_counters_and_cached_status(harness) -> None:
    account = harness.accounts.add("User@Example.com")

    async def scenario():
        for _ in range(3):
            await harness.engine.record_failed_attempt("user@example.com")
        before = await harness.engine.get_lockout_status("user@example.com")
        assert before.failed_attempts == 3
        assert await harness.engine.record_successful_login(account.id)
        return await harness.engine.get_lockout_status("USER@example.com")

    after = asyncio.run(scenario())

    stored = harness.accounts.get(account.id)
    assert (stored.failed_login_attempts, stored.lockout_end) == (0, None)
    assert after.failed_attempts == 0
    assert after.remaining_attempts == 5
    assert not after.is_locked_out


def test_storage_outage_fails_open(harness) -> None:
    account = harness.accounts.add("user@example.com")
    harness.accounts.fail_with = StorageError("accounts.get_by_identity")

    result = asyncio.run(harness.engine.record_failed_attempt(account.id, "198.51.100.7"))

    assert result.is_locked_out is False
    assert result.warnings == [DEGRADED_WARNING]
    assert asyncio.run(harness.engine.get_failed_attempts_by_ip("198.51.100.7")) == 1


def test_account_lock_does_not_consume_another_accounts_ip_budget(harness) -> None:
    first = harness.accounts.add("a@example.com")
    second = harness.accounts.add("b@example.com")
    ip = "203.0.113.10"

    async def scenario():
        for _ in range(6):
            await harness.engine.record_failed_attempt(first.id, ip)
        result = await harness.engine.record_failed_attempt(second.id, ip)
        rate = await harness.engine.check_ip_rate_limit(ip)
        return result, rate

    result, rate = asyncio.run(scenario())

    assert harness.accounts.get(first.id).lockout_end is not None
    assert not result.is_locked_out
    assert result.failed_attempts == 1
    assert rate.current_attempts == 7
    assert not rate.is_rate_limited


def test_end_to_end_lock_and_expiry(harness_factory) -> None:
    harness = harness_factory(
        {
            "MaxFailedAttempts": 3,
            "EnableProgressiveLockout": False,
            "LockoutDuration": "00:15:00",
        }
    )
    harness.accounts.add("user@example.com")
    start = harness.clock.now

    async def scenario():
        results = []
        for _ in range(3):
            results.append(
                await harness.engine.record_failed_attempt("user@example.com", "1.2.3.4")
            )
        locked_status = await harness.engine.get_lockout_status("user@example.com")
        fourth = await harness.engine.record_failed_attempt("user@example.com", "1.2.3.4")
        harness.clock.advance(timedelta(minutes=15, seconds=1))
        status = await harness.engine.get_lockout_status("user@example.com")
        return results, locked_status, fourth, status

    results, locked_status, fourth, status = asyncio.run(scenario())

    assert [r.is_locked_out for r in results] == [False, False, True]
    assert results[2].lockout_end == start + timedelta(minutes=15)
    assert locked_status.is_locked_out and not locked_status.can_retry_now
    assert fourth.is_locked_out and fourth.was_already_locked
    assert fourth.failed_attempts == 3
    assert harness.accounts.get(1).failed_login_attempts == 3
    assert status.can_retry_now
    assert not status.is_locked_out


def test_fail_closed_mode_denies_when_store_is_down(harness_factory) -> None:
    harness = harness_factory(failure_mode="fail-closed")
    account = harness.accounts.add("user@example.com")
    harness.accounts.fail_with = StorageError("accounts.get_by_identity")

    async def scenario():
        result = await harness.engine.record_failed_attempt(account.id)
        status = await harness.engine.get_lockout_status(account.id)
        return result, status

    result, status = asyncio.run(scenario())

    assert result.is_locked_out
    assert result.reason == FAIL_CLOSED_REASON
    assert status.is_locked_out
    assert not status.can_retry_now


def test_fail_closed_rate_limit_when_configuration_is_down(harness_factory) -> None:
    harness = harness_factory(failure_mode="fail-closed")
    harness.configuration.fail_with = RuntimeError("config store offline")

    rate = asyncio.run(harness.engine.check_ip_rate_limit("198.51.100.7"))

    assert rate.is_rate_limited


def test_configuration_outage_still_counts_ip(harness) -> None:
    harness.accounts.add("user@example.com")
    harness.configuration.fail_with = RuntimeError("config store offline")

    result = asyncio.run(harness.engine.record_failed_attempt("user@example.com", "198.51.100.7"))

    assert not result.is_locked_out
    assert result.warnings == [DEGRADED_WARNING]
    assert harness.accounts.get(1).failed_login_attempts == 0
    assert asyncio.run(harness.engine.get_failed_attempts_by_ip("198.51.100.7")) == 1


def test_slow_store_times_out_and_degrades(harness) -> None:
    account = harness.accounts.add("user@example.com")
    harness.accounts.delay = 0.5

    result = asyncio.run(harness.engine.record_failed_attempt(account.id, timeout=0.01))

    assert not result.is_locked_out
    assert result.warnings == [DEGRADED_WARNING]


def test_cancellation_is_not_swallowed(harness) -> None:
    account = harness.accounts.add("user@example.com")
    harness.accounts.fail_with = asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(harness.engine.record_failed_attempt(account.id))


def test_admin_lock_uses_configured_duration_and_notifies(harness) -> None:
    account = harness.accounts.add("user@example.com")
    start = harness.clock.now

    result = asyncio.run(harness.engine.lock_account(account.id, "Fraud review", locked_by=7))

    assert result.is_locked_out
    assert result.requires_admin_intervention
    assert result.lockout_end == start + timedelta(minutes=15)
    assert harness.accounts.get(account.id).failed_login_attempts == 0
    assert [n[0] for n in harness.notifications.user] == [account.id]
    assert [n[0] for n in harness.notifications.admin] == [account.id]
    event = harness.events.of_type(SecurityEventType.MANUAL_LOCKOUT)[0]
    assert event.details["locked_by"] == 7


def test_admin_lock_rejects_bad_input_without_raising(harness) -> None:
    harness.accounts.add("user@example.com")

    async def scenario():
        missing = await harness.engine.lock_account("ghost@example.com", "Review")
        negative = await harness.engine.lock_account(1, "Review", timedelta(minutes=-5))
        unknown_unlock = await harness.engine.unlock_account("ghost@example.com", "Review")
        return missing, negative, unknown_unlock

    missing, negative, unknown_unlock = asyncio.run(scenario())

    assert not missing.is_locked_out and missing.warnings
    assert not negative.is_locked_out and negative.warnings
    assert unknown_unlock is False
    assert harness.accounts.updates == []


def test_unlock_keeps_failure_counter(harness) -> None:
    account = harness.accounts.add("user@example.com")

    async def scenario() -> None:
        for _ in range(5):
            await harness.engine.record_failed_attempt(account.id)
        assert await harness.engine.is_account_locked_out(account.id)
        await harness.engine.unlock_account(account.id, "Caller verified", 1)

    asyncio.run(scenario())

    stored = harness.accounts.get(account.id)
    assert stored.lockout_end is None
    assert stored.failed_login_attempts == 5
    assert not asyncio.run(harness.engine.is_account_locked_out(account.id))
    assert asyncio.run(harness.engine.get_failed_login_attempts(account.id)) == 5


def test_update_lockout_configuration_round_trips(harness) -> None:
    config = LockoutConfiguration(
        max_failed_attempts=3,
        lockout_progression=(timedelta(minutes=1), timedelta(minutes=2)),
        trusted_ip_ranges=("10.0.0.0/8",),
    )

    async def scenario() -> LockoutConfiguration:
        assert await harness.engine.update_lockout_configuration(config)
        return await harness.engine.get_lockout_configuration()

    loaded = asyncio.run(scenario())

    assert loaded == config
    assert harness.configuration.values["LockoutProgression"] == ["00:01:00", "00:02:00"]


def test_update_lockout_configuration_needs_writable_provider(harness_factory) -> None:
    harness = harness_factory()

    class ReadOnlyProvider:
        async def get_configuration(self, category, key, default):
            return default

    harness.engine.context.configuration = ReadOnlyProvider()

    assert asyncio.run(harness.engine.update_lockout_configuration(LockoutConfiguration())) is False
