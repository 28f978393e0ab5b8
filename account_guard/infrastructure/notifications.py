# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

from account_guard.domain.lockout import LockoutResult
from account_guard.shared.logging import logger


class LogNotificationDispatcher:
    """Notification port that only writes to the log.

    Stands in for a mail or chat delivery channel.
    """

    async def send_lockout_notification(self, account_id: int, result: LockoutResult) -> None:
        until = result.lockout_end.isoformat() if result.lockout_end else "-"
        logger.info(
            f"notify: account {account_id} locked until {until} "
            f"after {result.failed_attempts} failed attempts"
        )

    async def send_admin_lockout_notification(
        self, account_id: int, result: LockoutResult
    ) -> None:
        logger.warning(f"notify[admin]: account {account_id} locked ({result.reason or 'n/a'})")


__all__ = ["LogNotificationDispatcher"]
