# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

import asyncio
import secrets
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from account_guard.application.interfaces import Credentials
from account_guard.domain.lockout import (
    AccountIdentity,
    AccountLockoutState,
    AccountUpdate,
    normalize_email,
)
from account_guard.infrastructure.db.models import SessionToken, UserAccount
from account_guard.infrastructure.db.session import SessionFactory, session_scope
from account_guard.shared.errors import ConcurrencyConflictError, StorageError


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _to_domain(row: UserAccount) -> AccountLockoutState:
    return AccountLockoutState(
        id=row.id,
        email=row.email,
        display_name=row.display_name or "",
        failed_login_attempts=row.failed_login_attempts,
        lockout_end=as_utc(row.lockout_end),
        version=row.version,
    )


def _identity_clause(identity: AccountIdentity):
    if isinstance(identity, int):
        return UserAccount.id == identity
    return UserAccount.normalized_email == normalize_email(identity)


def apply_account_update(session: Session, change: AccountUpdate) -> bool:
    """Compare-and-set the lockout columns; ``False`` when the version moved."""

    result = session.execute(
        update(UserAccount)
        .where(UserAccount.id == change.account_id)
        .where(UserAccount.version == change.expected_version)
        .values(
            failed_login_attempts=change.failed_login_attempts,
            lockout_end=change.lockout_end,
            version=change.expected_version + 1,
        )
    )
    return result.rowcount == 1


class SqlAlchemyAccountStore:
    """``AccountStore`` over the ``user_accounts`` table.

    Sessions are blocking, so every call runs in a worker thread.
    """

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def get_by_identity(self, identity: AccountIdentity) -> AccountLockoutState | None:
        return await self._run("get_by_identity", self._get_by_identity, identity)

    async def update(self, update: AccountUpdate) -> AccountLockoutState:
        return await self._run("update", self._update, update)

    async def get_locked_out_accounts(self) -> Sequence[AccountLockoutState]:
        return await self._run("get_locked_out_accounts", self._locked_out)

    async def get_accounts_with_failed_attempts(
        self, min_attempts: int
    ) -> Sequence[AccountLockoutState]:
        return await self._run(
            "get_accounts_with_failed_attempts", self._with_failures, min_attempts
        )

    async def add(
        self, email: str, *, display_name: str = "", password_hash: str | None = None
    ) -> AccountLockoutState:
        return await self._run("add", self._add, email, display_name, password_hash)

    async def _run(self, operation: str, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except SQLAlchemyError as exc:
            raise StorageError(f"accounts.{operation}") from exc

    def _get_by_identity(self, identity: AccountIdentity) -> AccountLockoutState | None:
        with session_scope(self._session_factory) as session:
            row = session.scalars(select(UserAccount).where(_identity_clause(identity))).first()
            return _to_domain(row) if row else None

    def _update(self, change: AccountUpdate) -> AccountLockoutState:
        with session_scope(self._session_factory) as session:
            applied = apply_account_update(session, change)
            row = session.get(UserAccount, change.account_id) if applied else None
            state = _to_domain(row) if row else None
        if state is None:
            raise ConcurrencyConflictError(change.account_id, change.expected_version)
        return state

    def _locked_out(self) -> list[AccountLockoutState]:
        with session_scope(self._session_factory) as session:
            rows = session.scalars(
                select(UserAccount)
                .where(UserAccount.lockout_end.is_not(None))
                .order_by(UserAccount.lockout_end.asc(), UserAccount.id.asc())
            ).all()
            return [_to_domain(row) for row in rows]

    def _with_failures(self, min_attempts: int) -> list[AccountLockoutState]:
        with session_scope(self._session_factory) as session:
            rows = session.scalars(
                select(UserAccount)
                .where(UserAccount.failed_login_attempts >= min_attempts)
                .order_by(UserAccount.failed_login_attempts.desc(), UserAccount.id.asc())
            ).all()
            return [_to_domain(row) for row in rows]

    def _add(self, email: str, display_name: str, password_hash: str | None) -> AccountLockoutState:
        with session_scope(self._session_factory) as session:
            row = UserAccount(
                email=email,
                normalized_email=normalize_email(email),
                display_name=display_name,
                password_hash=password_hash,
            )
            session.add(row)
            session.flush()
            session.refresh(row)
            return _to_domain(row)


class SqlAlchemyCredentialStore:
    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def find_credentials(self, identity: AccountIdentity) -> Credentials | None:
        try:
            return await asyncio.to_thread(self._find, identity)
        except SQLAlchemyError as exc:
            raise StorageError("credentials.find") from exc

    def _find(self, identity: AccountIdentity) -> Credentials | None:
        with session_scope(self._session_factory) as session:
            row = session.scalars(select(UserAccount).where(_identity_clause(identity))).first()
            if not row or not row.password_hash:
                return None
            return Credentials(account_id=row.id, password_hash=row.password_hash)


class SqlAlchemySessionRevoker:
    """Session-token table operations used by the login flow."""

    def __init__(
        self, session_factory: SessionFactory, *, token_ttl: timedelta = timedelta(days=7)
    ):
        self._session_factory = session_factory
        self._token_ttl = token_ttl

    async def revoke_all_for_account(self, account_id: int) -> int:
        return await asyncio.to_thread(self._revoke_all, account_id)

    async def issue_for_account(self, account_id: int) -> str:
        return await asyncio.to_thread(self._issue, account_id)

    def _revoke_all(self, account_id: int) -> int:
        with session_scope(self._session_factory) as session:
            result = session.execute(
                delete(SessionToken).where(SessionToken.account_id == account_id)
            )
            return result.rowcount or 0

    def _issue(self, account_id: int) -> str:
        with session_scope(self._session_factory) as session:
            token_value = secrets.token_urlsafe(48)
            expires_at = datetime.now(UTC) + self._token_ttl
            session.add(
                SessionToken(account_id=account_id, token=token_value, expires_at=expires_at)
            )
            return token_value


__all__ = [
    "SqlAlchemyAccountStore",
    "SqlAlchemyCredentialStore",
    "SqlAlchemySessionRevoker",
    "apply_account_update",
    "as_utc",
]
