# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from .anomaly import AnomalyScorer
from .attempt_ledger import AttemptLedger
from .context import DEGRADED_WARNING, FAIL_CLOSED_REASON, LockoutContext
from .lockout_policy import ACCOUNT_NOT_FOUND, LockoutPolicyService
from .rate_limiter import IpRateLimiter
from .reporting import LockoutReporting
from .status_cache import LockoutStatusCache

__all__ = [
    "ACCOUNT_NOT_FOUND",
    "AnomalyScorer",
    "AttemptLedger",
    "DEGRADED_WARNING",
    "FAIL_CLOSED_REASON",
    "IpRateLimiter",
    "LockoutContext",
    "LockoutPolicyService",
    "LockoutReporting",
    "LockoutStatusCache",
]
