# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""Async loading of the lockout tunables from the dynamic configuration store.

Values may arrive already typed or as the strings an operator typed into the
store (``"00:15:00"``, ``"true"``, ``"5m,15m,1h"``). Each key is parsed on its
own and falls back to its default when it is missing or malformed, so one bad
entry never takes the whole policy down.
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Callable
from datetime import timedelta
from typing import Any

from account_guard.application.interfaces import (
    ConfigurationProvider,
    WritableConfigurationProvider,
)
from account_guard.domain.lockout import InvariantViolation, LockoutConfiguration
from account_guard.shared.errors import ConfigurationError
from account_guard.shared.logging import logger

LOCKOUT_CATEGORY = "Lockout"

_TIMESPAN_RE = re.compile(
    r"^(?:(?P<days>\d+)\.)?(?P<hours>\d{1,2}):(?P<minutes>\d{2})(?::(?P<seconds>\d{2}(?:\.\d+)?))?$"
)
_SHORTHAND_RE = re.compile(r"^(?P<value>\d+(?:\.\d+)?)\s*(?P<unit>[smhd])$", re.IGNORECASE)
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_timespan(value: Any) -> timedelta:
    """Parse ``[d.]hh:mm[:ss]``, ``15m``-style shorthand or a number of seconds."""

    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f"not a duration: {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)

    text = str(value).strip()
    match = _TIMESPAN_RE.match(text)
    if match:
        return timedelta(
            days=int(match["days"] or 0),
            hours=int(match["hours"]),
            minutes=int(match["minutes"]),
            seconds=float(match["seconds"] or 0),
        )
    match = _SHORTHAND_RE.match(text)
    if match:
        return timedelta(seconds=float(match["value"]) * _UNIT_SECONDS[match["unit"].lower()])
    try:
        return timedelta(seconds=float(text))
    except ValueError:
        raise ValueError(f"not a duration: {value!r}") from None


def format_timespan(value: timedelta) -> str:
    total = int(value.total_seconds())
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, seconds = divmod(rest, 60)
    prefix = f"{days}." if days else ""
    return f"{prefix}{hours:02d}:{minutes:02d}:{seconds:02d}"


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


def parse_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"not an integer: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return int(str(value).strip())


def parse_list(value: Any) -> list[Any]:
    """Accept a sequence, a JSON array or a comma-separated string."""

    if isinstance(value, (list, tuple)):
        return list(value)
    text = str(value).strip()
    if not text:
        return []
    if text.startswith("["):
        parsed = json.loads(text)
        if not isinstance(parsed, list):
            raise ValueError(f"not a list: {value!r}")
        return parsed
    return [item.strip() for item in text.split(",") if item.strip()]


def _parse_timespan_list(value: Any) -> tuple[timedelta, ...]:
    return tuple(parse_timespan(item) for item in parse_list(value))


def _parse_string_list(value: Any) -> tuple[str, ...]:
    return tuple(str(item).strip() for item in parse_list(value))


_DEFAULTS = LockoutConfiguration()

# (configuration key, dataclass field, parser)
_KEYS: tuple[tuple[str, str, Callable[[Any], Any]], ...] = (
    ("MaxFailedAttempts", "max_failed_attempts", parse_int),
    ("LockoutDuration", "lockout_duration", parse_timespan),
    ("EnableProgressiveLockout", "enable_progressive_lockout", parse_bool),
    ("LockoutProgression", "lockout_progression", _parse_timespan_list),
    ("FailedAttemptWindow", "failed_attempt_window", parse_timespan),
    ("ResetAttemptsOnSuccess", "reset_attempts_on_success", parse_bool),
    ("EnableIpBlocking", "enable_ip_blocking", parse_bool),
    ("MaxFailedAttemptsPerIp", "max_failed_attempts_per_ip", parse_int),
    ("IpBlockDuration", "ip_block_duration", parse_timespan),
    ("NotifyOnLockout", "notify_on_lockout", parse_bool),
    ("NotifyAdminOnLockout", "notify_admin_on_lockout", parse_bool),
    ("EnableAnomalyDetection", "enable_anomaly_detection", parse_bool),
    ("TrustedIpRanges", "trusted_ip_ranges", _parse_string_list),
    ("BlockedIpRanges", "blocked_ip_ranges", _parse_string_list),
)


async def _read_key(
    provider: ConfigurationProvider,
    category: str,
    key: str,
    attr: str,
    parser: Callable[[Any], Any],
) -> Any:
    default = getattr(_DEFAULTS, attr)
    try:
        raw = await provider.get_configuration(category, key, default)
    except (asyncio.CancelledError, TimeoutError):
        raise
    except Exception as exc:
        raise ConfigurationError(category, key) from exc

    if raw is None:
        return default
    try:
        return parser(raw)
    except (TypeError, ValueError) as exc:
        logger.warning(f"lockout config: invalid {category}.{key}={raw!r} ({exc}), using default")
        return default


async def load_lockout_configuration(
    provider: ConfigurationProvider, *, category: str = LOCKOUT_CATEGORY
) -> LockoutConfiguration:
    """Build one immutable snapshot of the lockout policy.

    All keys are fetched concurrently. Provider failures surface as
    ``ConfigurationError``; the caller decides how to degrade.
    """

    values = await asyncio.gather(
        *(_read_key(provider, category, key, attr, parser) for key, attr, parser in _KEYS)
    )
    fields = {attr: value for (_, attr, _), value in zip(_KEYS, values, strict=True)}
    try:
        return LockoutConfiguration(**fields)
    except InvariantViolation as exc:
        # Individually valid values can still combine into an invalid policy.
        logger.warning(f"lockout config: rejected snapshot ({exc}), falling back to defaults")
        return LockoutConfiguration()


def _to_storage(value: Any) -> Any:
    if isinstance(value, timedelta):
        return format_timespan(value)
    if isinstance(value, tuple):
        return [_to_storage(item) for item in value]
    return value


async def save_lockout_configuration(
    provider: WritableConfigurationProvider,
    config: LockoutConfiguration,
    *,
    category: str = LOCKOUT_CATEGORY,
) -> None:
    for key, attr, _ in _KEYS:
        await provider.set_configuration(category, key, _to_storage(getattr(config, attr)))
    logger.info(f"lockout config: updated category={category}")


__all__ = [
    "LOCKOUT_CATEGORY",
    "format_timespan",
    "load_lockout_configuration",
    "parse_bool",
    "parse_int",
    "parse_list",
    "parse_timespan",
    "save_lockout_configuration",
]
