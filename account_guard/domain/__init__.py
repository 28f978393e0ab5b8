# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from .lockout import (
    AccountLockoutState,
    AccountStore,
    AccountUpdate,
    InvariantViolation,
    LockoutConfiguration,
    LockoutResult,
    LockoutStatus,
)

__all__ = [
    "AccountLockoutState",
    "AccountStore",
    "AccountUpdate",
    "InvariantViolation",
    "LockoutConfiguration",
    "LockoutResult",
    "LockoutStatus",
]
