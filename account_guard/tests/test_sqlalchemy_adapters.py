from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func, select

from account_guard.application.services.lockout_configuration import (
    load_lockout_configuration,
)
from account_guard.application.services.password_hashing import WerkzeugPasswordHasher
from account_guard.application.use_cases.users.login_user import AccountLockedError
from account_guard.container import Container
from account_guard.domain.lockout import (
    AccountUpdate,
    InvalidCredentialsError,
    SecurityEvent,
    SecurityEventType,
)
from account_guard.infrastructure.db import build_engine, build_session_factory, init_db
from account_guard.infrastructure.db.models import SessionToken
from account_guard.infrastructure.repositories.accounts import (
    SqlAlchemyAccountStore,
    SqlAlchemyCredentialStore,
    SqlAlchemySessionRevoker,
)
from account_guard.infrastructure.repositories.configuration import (
    SqlAlchemyConfigurationProvider,
)
from account_guard.infrastructure.repositories.security_events import (
    SqlAlchemyKnownDeviceStore,
    SqlAlchemySecurityEventStore,
)
from account_guard.infrastructure.unit_of_work import SqlAlchemyUnitOfWork
from account_guard.shared.config import AppConfig, DatabaseConfig
from account_guard.shared.errors import ConcurrencyConflictError

NOW = datetime(2025, 1, 6, 12, 0, tzinfo=UTC)


@pytest.fixture()
def session_factory(tmp_path):
    engine = build_engine(DatabaseConfig(url=f"sqlite:///{tmp_path / 'guard.db'}"))
    init_db(engine)
    yield build_session_factory(engine)
    engine.dispose()


def test_account_lookup_is_case_insensitive(session_factory) -> None:
    store = SqlAlchemyAccountStore(session_factory)

    async def scenario():
        added = await store.add("Alice@Example.com", display_name="Alice")
        by_email = await store.get_by_identity(" alice@EXAMPLE.com")
        return added, by_email, await store.get_by_identity(added.id)

    added, by_email, by_id = asyncio.run(scenario())

    assert by_email == added
    assert by_id == added
    assert added.email == "Alice@Example.com"
    assert added.version == 0


def test_compare_and_set_update(session_factory) -> None:
    store = SqlAlchemyAccountStore(session_factory)
    lockout_end = NOW + timedelta(minutes=5)

    async def scenario():
        account = await store.add("alice@example.com")
        updated = await store.update(
            AccountUpdate(account.id, account.version, 5, lockout_end)
        )
        with pytest.raises(ConcurrencyConflictError):
            await store.update(AccountUpdate(account.id, account.version, 0, None))
        return updated, await store.get_by_identity(account.id)

    updated, stored = asyncio.run(scenario())

    assert updated.version == 1
    assert stored.failed_login_attempts == 5
    assert stored.lockout_end == lockout_end
    assert stored.lockout_end.tzinfo is not None


def test_locked_out_listing_includes_expired_locks(session_factory) -> None:
    store = SqlAlchemyAccountStore(session_factory)

    async def scenario():
        expired = await store.add("old@example.com")
        active = await store.add("new@example.com")
        await store.add("free@example.com", password_hash="x")
        await store.update(AccountUpdate(expired.id, 0, 5, NOW - timedelta(hours=1)))
        await store.update(AccountUpdate(active.id, 0, 2, NOW + timedelta(hours=1)))
        locked = await store.get_locked_out_accounts()
        at_risk = await store.get_accounts_with_failed_attempts(3)
        return expired, active, locked, at_risk

    expired, active, locked, at_risk = asyncio.run(scenario())

    assert [a.id for a in locked] == [expired.id, active.id]
    assert [a.id for a in at_risk] == [expired.id]


def test_configuration_values_keep_their_type(session_factory) -> None:
    provider = SqlAlchemyConfigurationProvider(session_factory)

    async def scenario():
        await provider.set_configuration("Lockout", "MaxFailedAttempts", 3)
        await provider.set_configuration("Lockout", "EnableIpBlocking", False)
        await provider.set_configuration("Lockout", "LockoutDuration", timedelta(minutes=20))
        await provider.set_configuration(
            "Lockout", "LockoutProgression", [timedelta(minutes=1), timedelta(minutes=2)]
        )
        await provider.set_configuration("Lockout", "MaxFailedAttempts", 4)
        return (
            await provider.get_configuration("Lockout", "MaxFailedAttempts", 0),
            await provider.get_configuration("Lockout", "EnableIpBlocking", True),
            await provider.get_configuration("Other", "MaxFailedAttempts", 9),
            await load_lockout_configuration(provider),
        )

    max_attempts, ip_blocking, other, config = asyncio.run(scenario())

    assert max_attempts == 4
    assert ip_blocking is False
    assert other == 9
    assert config.max_failed_attempts == 4
    assert config.enable_ip_blocking is False
    assert config.lockout_duration == timedelta(minutes=20)
    assert config.lockout_progression == (timedelta(minutes=1), timedelta(minutes=2))


def test_security_events_are_filtered_and_newest_first(session_factory) -> None:
    store = SqlAlchemySecurityEventStore(session_factory)

    def event(n: int, event_type: SecurityEventType, account_id: int | None) -> SecurityEvent:
        return SecurityEvent(
            event_id=f"evt-{n}",
            event_type=event_type,
            timestamp=NOW + timedelta(minutes=n),
            account_id=account_id,
            ip_address="198.51.100.7",
            details={"reason": "invalid_credentials"} if n == 1 else {},
        )

    async def scenario():
        await store.append(event(0, SecurityEventType.FAILED_LOGIN, 1))
        await store.append(event(1, SecurityEventType.AUTOMATIC_LOCKOUT, 1))
        await store.append(event(2, SecurityEventType.FAILED_LOGIN, 2))
        return (
            await store.list_events(since=NOW),
            await store.list_events(since=NOW, account_id=1),
            await store.list_events(
                since=NOW,
                until=NOW + timedelta(minutes=1),
                event_types=[SecurityEventType.AUTOMATIC_LOCKOUT],
            ),
            await store.list_events(since=NOW + timedelta(minutes=2)),
        )

    everything, account_events, lockouts, latest = asyncio.run(scenario())

    assert [e.event_id for e in everything] == ["evt-2", "evt-1", "evt-0"]
    assert [e.event_id for e in account_events] == ["evt-1", "evt-0"]
    assert [e.event_id for e in lockouts] == ["evt-1"]
    assert lockouts[0].details == {"reason": "invalid_credentials"}
    assert lockouts[0].timestamp == NOW + timedelta(minutes=1)
    assert [e.event_id for e in latest] == ["evt-2"]


def test_known_devices_are_remembered_once(session_factory) -> None:
    accounts = SqlAlchemyAccountStore(session_factory)
    devices = SqlAlchemyKnownDeviceStore(session_factory)

    async def scenario():
        account = await accounts.add("alice@example.com")
        before = await devices.is_known(account.id, "fp-1")
        await devices.remember(account.id, "fp-1")
        await devices.remember(account.id, "fp-1")
        return before, await devices.is_known(account.id, "fp-1")

    assert asyncio.run(scenario()) == (False, True)


def test_unit_of_work_stages_lockout_writes(session_factory) -> None:
    accounts = SqlAlchemyAccountStore(session_factory)
    account = asyncio.run(accounts.add("alice@example.com"))
    asyncio.run(accounts.update(AccountUpdate(account.id, 0, 3, None)))

    with SqlAlchemyUnitOfWork(session_factory) as uow:
        uow.stage(AccountUpdate(account.id, 1, 0, None))

    with pytest.raises(ConcurrencyConflictError):
        with SqlAlchemyUnitOfWork(session_factory) as uow:
            uow.stage(AccountUpdate(account.id, 1, 7, None))

    stored = asyncio.run(accounts.get_by_identity(account.id))
    assert stored.failed_login_attempts == 0
    assert stored.version == 2


def test_unit_of_work_runs_commit_callbacks_only_after_commit(session_factory) -> None:
    accounts = SqlAlchemyAccountStore(session_factory)
    account = asyncio.run(accounts.add("alice@example.com"))
    calls: list[str] = []

    with SqlAlchemyUnitOfWork(session_factory) as uow:
        uow.stage(AccountUpdate(account.id, 0, 2, None))
        uow.after_commit(lambda: calls.append("committed"))
        assert calls == []

    with pytest.raises(RuntimeError):
        with SqlAlchemyUnitOfWork(session_factory) as uow:
            uow.after_commit(lambda: calls.append("rolled back"))
            raise RuntimeError("caller failed")

    assert calls == ["committed"]


def test_credentials_and_sessions(session_factory) -> None:
    accounts = SqlAlchemyAccountStore(session_factory)
    credentials = SqlAlchemyCredentialStore(session_factory)
    sessions = SqlAlchemySessionRevoker(session_factory)

    async def scenario():
        account = await accounts.add("alice@example.com", password_hash="hashed")
        await accounts.add("nopass@example.com")
        found = await credentials.find_credentials("ALICE@example.com")
        missing = await credentials.find_credentials("nopass@example.com")
        first = await sessions.issue_for_account(account.id)
        second = await sessions.issue_for_account(account.id)
        revoked = await sessions.revoke_all_for_account(account.id)
        return account, found, missing, first, second, revoked

    account, found, missing, first, second, revoked = asyncio.run(scenario())

    assert found.account_id == account.id
    assert found.password_hash == "hashed"
    assert missing is None
    assert first != second
    assert revoked == 2
    with session_factory() as session:
        assert session.scalar(select(func.count()).select_from(SessionToken)) == 0


def test_container_locks_account_after_repeated_failures(tmp_path) -> None:
    container = Container(
        AppConfig(database=DatabaseConfig(url=f"sqlite:///{tmp_path / 'guard.db'}"))
    )
    init_db(container.engine)
    password_hash = WerkzeugPasswordHasher().hash("secret123")
    asyncio.run(container.account_store.add("alice@example.com", password_hash=password_hash))
    login = container.login_user_use_case

    async def attempt(password: str) -> str:
        return await login.execute("alice@example.com", password, "198.51.100.7")

    for _ in range(4):
        with pytest.raises(InvalidCredentialsError):
            asyncio.run(attempt("wrong"))
    with pytest.raises(AccountLockedError):
        asyncio.run(attempt("wrong"))
    with pytest.raises(AccountLockedError):
        asyncio.run(attempt("secret123"))

    status = asyncio.run(container.lockout_engine.get_lockout_status("alice@example.com"))
    events = asyncio.run(container.lockout_engine.get_system_security_events())
    container.engine.dispose()

    assert status.is_locked_out
    assert status.failed_attempts == 5
    assert sum(e.event_type is SecurityEventType.AUTOMATIC_LOCKOUT for e in events) == 1
    assert sum(e.event_type is SecurityEventType.FAILED_LOGIN for e in events) == 5
