# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""Application dependency container."""

from __future__ import annotations

from datetime import timedelta
from functools import cached_property

from sqlalchemy.engine import Engine

from account_guard.application.services.lockout_engine import AccountLockoutEngine
from account_guard.application.services.password_hashing import WerkzeugPasswordHasher
from account_guard.application.use_cases.users.login_user import LoginUserUseCase
from account_guard.infrastructure.audit import AuditingSecurityEventSink
from account_guard.infrastructure.cache import InMemoryTTLCache
from account_guard.infrastructure.db import SessionFactory, build_engine, build_session_factory
from account_guard.infrastructure.notifications import LogNotificationDispatcher
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
from account_guard.infrastructure.resilience import CircuitBreaker
from account_guard.shared.config import AppConfig, load_config


class Container:
    def __init__(self, settings: AppConfig | None = None) -> None:
        self._settings = settings

    @cached_property
    def settings(self) -> AppConfig:
        return self._settings or load_config()

    @cached_property
    def engine(self) -> Engine:
        return build_engine(self.settings.database)

    @cached_property
    def session_factory(self) -> SessionFactory:
        return build_session_factory(self.engine)

    @cached_property
    def cache(self) -> InMemoryTTLCache:
        return InMemoryTTLCache(timedelta(seconds=self.settings.cache.status_ttl_seconds))

    @cached_property
    def account_store(self) -> SqlAlchemyAccountStore:
        return SqlAlchemyAccountStore(self.session_factory)

    @cached_property
    def configuration_provider(self) -> SqlAlchemyConfigurationProvider:
        return SqlAlchemyConfigurationProvider(self.session_factory)

    @cached_property
    def security_event_store(self) -> SqlAlchemySecurityEventStore:
        return SqlAlchemySecurityEventStore(self.session_factory)

    @cached_property
    def security_event_sink(self) -> AuditingSecurityEventSink:
        return AuditingSecurityEventSink(self.security_event_store)

    @cached_property
    def known_devices(self) -> SqlAlchemyKnownDeviceStore:
        return SqlAlchemyKnownDeviceStore(self.session_factory)

    @cached_property
    def notifications(self) -> LogNotificationDispatcher:
        return LogNotificationDispatcher()

    @cached_property
    def account_store_breaker(self) -> CircuitBreaker:
        return CircuitBreaker.from_config(self.settings.resilience, "account_store")

    @cached_property
    def lockout_engine(self) -> AccountLockoutEngine:
        return AccountLockoutEngine(
            accounts=self.account_store,
            configuration=self.configuration_provider,
            cache=self.cache,
            events=self.security_event_sink,
            notifications=self.notifications,
            known_devices=self.known_devices,
            event_history=self.security_event_store,
            settings=self.settings,
            breaker=self.account_store_breaker,
        )

    @cached_property
    def password_hasher(self) -> WerkzeugPasswordHasher:
        return WerkzeugPasswordHasher()

    @cached_property
    def credential_store(self) -> SqlAlchemyCredentialStore:
        return SqlAlchemyCredentialStore(self.session_factory)

    @cached_property
    def session_revoker(self) -> SqlAlchemySessionRevoker:
        return SqlAlchemySessionRevoker(self.session_factory)

    @cached_property
    def login_user_use_case(self) -> LoginUserUseCase:
        return LoginUserUseCase(
            lockout=self.lockout_engine,
            credentials=self.credential_store,
            sessions=self.session_revoker,
            password_hasher=self.password_hasher,
        )


container = Container()

__all__ = ["Container", "container"]
