# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Protocol

from account_guard.domain.lockout import SecurityEvent, SecurityEventType
from account_guard.shared.logging import logger, sanitize_mapping

_DESCRIPTIONS: dict[SecurityEventType, tuple[str, str]] = {
    SecurityEventType.FAILED_LOGIN: ("Failed login attempt", "Warning"),
    SecurityEventType.SUCCESSFUL_LOGIN: ("Successful login", "Info"),
    SecurityEventType.AUTOMATIC_LOCKOUT: ("Account locked after repeated failures", "High"),
    SecurityEventType.MANUAL_LOCKOUT: ("Account locked by administrator", "Medium"),
    SecurityEventType.MANUAL_UNLOCK: ("Account unlocked by administrator", "Medium"),
    SecurityEventType.EXPIRED_LOCKOUT_CLEARED: ("Expired lockout cleared", "Info"),
    SecurityEventType.IP_BLOCKED: ("Source address blocked", "High"),
    SecurityEventType.IP_UNBLOCKED: ("Source address unblocked", "Medium"),
}


class SecurityEventStore(Protocol):
    async def append(self, event: SecurityEvent) -> None: ...


class AuditingSecurityEventSink:
    """Writes security events to the log and, when configured, to a store.

    Recording is best effort: a failing store is logged and never fails the
    operation that produced the event.
    """

    def __init__(
        self,
        store: SecurityEventStore | None = None,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._store = store
        self._clock = clock

    async def record(
        self,
        event_type: SecurityEventType,
        *,
        account_id: int | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        description, severity = _DESCRIPTIONS[event_type]
        safe_details = sanitize_mapping(details) if details else {}

        log_message = (
            f"AUDIT: {event_type.value} | "
            f"account_id={account_id} | "
            f"ip={ip_address} | "
            f"severity={severity}"
        )
        if safe_details:
            log_message += f" | details={safe_details}"

        if severity == "Info":
            logger.info(log_message)
        else:
            logger.warning(log_message)

        if self._store is None:
            return

        event = SecurityEvent(
            event_id=uuid.uuid4().hex,
            event_type=event_type,
            timestamp=self._clock(),
            account_id=account_id,
            ip_address=ip_address,
            user_agent=user_agent,
            description=description,
            severity=severity,
            details=safe_details,
        )
        try:
            await self._store.append(event)
        except Exception as exc:
            logger.warning(f"Failed to store security event {event_type.value}: {exc}")


__all__ = ["AuditingSecurityEventSink", "SecurityEventStore"]
