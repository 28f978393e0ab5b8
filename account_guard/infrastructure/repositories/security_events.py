# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from account_guard.domain.lockout import SecurityEvent, SecurityEventType
from account_guard.infrastructure.db.models import KnownDevice, SecurityEventRecord
from account_guard.infrastructure.db.session import SessionFactory, session_scope
from account_guard.infrastructure.repositories.accounts import as_utc
from account_guard.shared.errors import StorageError


def _to_domain(row: SecurityEventRecord) -> SecurityEvent:
    return SecurityEvent(
        event_id=row.event_id,
        event_type=SecurityEventType(row.event_type),
        timestamp=as_utc(row.timestamp),
        account_id=row.account_id,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        description=row.description or "",
        severity=row.severity or "Info",
        details=json.loads(row.details_json) if row.details_json else {},
    )


class SqlAlchemySecurityEventStore:
    """Append-only security event history; also answers report queries."""

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def append(self, event: SecurityEvent) -> None:
        try:
            await asyncio.to_thread(self._append, event)
        except SQLAlchemyError as exc:
            raise StorageError("security_events.append") from exc

    async def list_events(
        self,
        *,
        since: datetime,
        until: datetime | None = None,
        account_id: int | None = None,
        event_types: Sequence[SecurityEventType] | None = None,
    ) -> Sequence[SecurityEvent]:
        try:
            return await asyncio.to_thread(self._list, since, until, account_id, event_types)
        except SQLAlchemyError as exc:
            raise StorageError("security_events.list") from exc

    def _append(self, event: SecurityEvent) -> None:
        with session_scope(self._session_factory) as session:
            session.add(
                SecurityEventRecord(
                    event_id=event.event_id,
                    event_type=event.event_type.value,
                    timestamp=event.timestamp,
                    account_id=event.account_id,
                    ip_address=event.ip_address,
                    user_agent=event.user_agent,
                    description=event.description,
                    severity=event.severity,
                    details_json=json.dumps(event.details, default=str) if event.details else None,
                )
            )

    def _list(
        self,
        since: datetime,
        until: datetime | None,
        account_id: int | None,
        event_types: Sequence[SecurityEventType] | None,
    ) -> list[SecurityEvent]:
        query = select(SecurityEventRecord).where(SecurityEventRecord.timestamp >= _utc(since))
        if until is not None:
            query = query.where(SecurityEventRecord.timestamp <= _utc(until))
        if account_id is not None:
            query = query.where(SecurityEventRecord.account_id == account_id)
        if event_types:
            query = query.where(SecurityEventRecord.event_type.in_([t.value for t in event_types]))
        query = query.order_by(SecurityEventRecord.timestamp.desc(), SecurityEventRecord.id.desc())

        with session_scope(self._session_factory) as session:
            return [_to_domain(row) for row in session.scalars(query).all()]


def _utc(value: datetime) -> datetime:
    # Stored timestamps are UTC; bounds must be too for SQLite string ordering.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class SqlAlchemyKnownDeviceStore:
    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def is_known(self, account_id: int, fingerprint: str) -> bool:
        try:
            return await asyncio.to_thread(self._is_known, account_id, fingerprint)
        except SQLAlchemyError as exc:
            raise StorageError("known_devices.is_known") from exc

    async def remember(self, account_id: int, fingerprint: str) -> None:
        try:
            await asyncio.to_thread(self._remember, account_id, fingerprint)
        except SQLAlchemyError as exc:
            raise StorageError("known_devices.remember") from exc

    def _is_known(self, account_id: int, fingerprint: str) -> bool:
        with session_scope(self._session_factory) as session:
            row = session.scalars(
                select(KnownDevice.id)
                .where(KnownDevice.account_id == account_id)
                .where(KnownDevice.fingerprint == fingerprint)
            ).first()
            return row is not None

    def _remember(self, account_id: int, fingerprint: str) -> None:
        with session_scope(self._session_factory) as session:
            row = session.scalars(
                select(KnownDevice)
                .where(KnownDevice.account_id == account_id)
                .where(KnownDevice.fingerprint == fingerprint)
            ).first()
            if row is None:
                session.add(KnownDevice(account_id=account_id, fingerprint=fingerprint))
            else:
                row.last_seen = datetime.now(UTC)


__all__ = ["SqlAlchemyKnownDeviceStore", "SqlAlchemySecurityEventStore"]
