# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""Heuristic scoring of a single login attempt.

The result is advice for the caller; nothing here locks an account.
"""

from __future__ import annotations

from account_guard.domain.lockout import (
    AccountIdentity,
    AnomalyDetectionResult,
    LoginAttempt,
)
from account_guard.shared.logging import logger

from .context import LockoutContext

UNUSUAL_TIME = "Unusual login time"
NEW_DEVICE = "New device"

UNUSUAL_TIME_WEIGHT = 0.3
NEW_DEVICE_WEIGHT = 0.4
EARLIEST_USUAL_HOUR = 6
LATEST_USUAL_HOUR = 22

ANOMALY_THRESHOLD = 0.5
VERIFICATION_THRESHOLD = 0.7


def recommended_action(score: float) -> str:
    if score > VERIFICATION_THRESHOLD:
        return "Require additional verification"
    if score > ANOMALY_THRESHOLD:
        return "Monitor closely"
    return "Allow"


def score_factors(factors: list[tuple[str, float]]) -> AnomalyDetectionResult:
    names = [name for name, _ in factors]
    score = round(min(1.0, sum(weight for _, weight in factors)), 2)
    return AnomalyDetectionResult(
        is_anomalous=score > ANOMALY_THRESHOLD,
        anomaly_score=score,
        anomaly_types=names,
        requires_additional_verification=score > VERIFICATION_THRESHOLD,
        recommended_action=recommended_action(score),
        suspicious_factors=list(names),
    )


class AnomalyScorer:
    def __init__(self, context: LockoutContext) -> None:
        self._ctx = context

    async def analyze_login_pattern(
        self,
        identity: AccountIdentity,
        attempt: LoginAttempt,
        *,
        timeout: float | None = None,
    ) -> AnomalyDetectionResult:
        try:
            config = await self._ctx.load_config(timeout)
            if not config.enable_anomaly_detection:
                return AnomalyDetectionResult()
            account = await self._ctx.call_store(
                self._ctx.accounts.get_by_identity, identity, timeout=timeout
            )
            if account is None:
                return AnomalyDetectionResult()

            factors: list[tuple[str, float]] = []
            # Hour as seen in the attempt's own timezone.
            hour = attempt.timestamp.hour
            if hour < EARLIEST_USUAL_HOUR or hour > LATEST_USUAL_HOUR:
                factors.append((UNUSUAL_TIME, UNUSUAL_TIME_WEIGHT))

            if attempt.device_fingerprint and not await self._is_known_device(
                account.id, attempt.device_fingerprint, timeout
            ):
                factors.append((NEW_DEVICE, NEW_DEVICE_WEIGHT))
        except Exception as exc:
            # Advisory output; never worth failing a login over.
            self._ctx.degrade("analyze_login_pattern", exc)
            return AnomalyDetectionResult()

        result = score_factors(factors)
        if result.is_anomalous:
            logger.info(
                f"anomaly: account {account.id} score={result.anomaly_score} "
                f"factors={result.anomaly_types}"
            )
        return result

    async def _is_known_device(
        self, account_id: int, fingerprint: str, timeout: float | None
    ) -> bool:
        if self._ctx.known_devices is None:
            return False
        return await self._ctx.call_store(
            self._ctx.known_devices.is_known, account_id, fingerprint, timeout=timeout
        )


__all__ = ["AnomalyScorer", "NEW_DEVICE", "UNUSUAL_TIME", "recommended_action", "score_factors"]
