# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

from datetime import timedelta

from account_guard.application.interfaces import (
    CredentialStore,
    PasswordHasher,
    SessionRevoker,
)
from account_guard.application.services.lockout_engine import AccountLockoutEngine
from account_guard.domain.lockout import InvalidCredentialsError, LockoutResult
from account_guard.shared.errors.base import AppError
from account_guard.shared.logging import correlation_scope, logger

_DUMMY_PASSWORD = "account-guard-unknown-identity"


def _seconds(value: timedelta | None) -> float:
    return round(value.total_seconds(), 1) if value else 0.0


class AccountLockedError(AppError):
    def __init__(self, lockout_remaining: timedelta | None = None) -> None:
        super().__init__(
            code="account_locked",
            context={"lockout_remaining_seconds": _seconds(lockout_remaining)},
        )


class RateLimitedError(AppError):
    def __init__(self, retry_after: timedelta | None = None) -> None:
        super().__init__(
            code="rate_limited",
            context={"retry_after_seconds": _seconds(retry_after)},
        )


class LoginUserUseCase:
    def __init__(
        self,
        *,
        lockout: AccountLockoutEngine,
        credentials: CredentialStore,
        sessions: SessionRevoker,
        password_hasher: PasswordHasher,
    ) -> None:
        self._lockout = lockout
        self._credentials = credentials
        self._sessions = sessions
        self._password_hasher = password_hasher
        self._dummy_hash: str | None = None

    async def execute(
        self,
        email: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
        device_fingerprint: str | None = None,
    ) -> str:
        with correlation_scope():
            return await self._login(
                email, password, ip_address, user_agent, device_fingerprint
            )

    async def _login(
        self,
        email: str,
        password: str,
        ip_address: str | None,
        user_agent: str | None,
        device_fingerprint: str | None,
    ) -> str:
        if ip_address:
            rate = await self._lockout.check_ip_rate_limit(ip_address)
            if rate.is_rate_limited:
                raise RateLimitedError(retry_after=rate.retry_after)

        status = await self._lockout.get_lockout_status(email)
        if status.is_locked_out:
            raise AccountLockedError(lockout_remaining=status.time_remaining)

        credentials = await self._credentials.find_credentials(email)
        hashed = credentials.password_hash if credentials else self._unknown_identity_hash()
        password_valid = self._password_hasher.verify(password, hashed)

        if credentials is None or not password_valid:
            result = await self._lockout.record_failed_attempt(
                email, ip_address, user_agent, reason="invalid_credentials"
            )
            if credentials is not None and _lock_transition(result):
                revoked = await self._sessions.revoke_all_for_account(credentials.account_id)
                logger.info(
                    f"login: revoked {revoked} sessions for locked account "
                    f"{credentials.account_id}"
                )
            if result.is_locked_out:
                raise AccountLockedError(lockout_remaining=result.lockout_duration)
            raise InvalidCredentialsError()

        await self._lockout.record_successful_login(
            credentials.account_id,
            ip_address,
            user_agent,
            device_fingerprint=device_fingerprint,
        )
        return await self._sessions.issue_for_account(credentials.account_id)

    def _unknown_identity_hash(self) -> str:
        # Verifying against a real hash keeps unknown identities as slow as known ones.
        if self._dummy_hash is None:
            self._dummy_hash = self._password_hasher.hash(_DUMMY_PASSWORD)
        return self._dummy_hash


def _lock_transition(result: LockoutResult) -> bool:
    return result.is_locked_out and not result.was_already_locked and not result.warnings


__all__ = ["AccountLockedError", "LoginUserUseCase", "RateLimitedError"]
