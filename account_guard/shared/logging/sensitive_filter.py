# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

REDACTED = "***REDACTED***"

_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # Stored password hashes (werkzeug scrypt / pbkdf2 formats)
    (re.compile(r"\b(?:scrypt|pbkdf2):[\w:]+\$[^\s'\"$]+\$[0-9a-f]+"), REDACTED),
    # Secrets and signing keys
    (
        re.compile(r"((?:secret|api)[_-]?key\s*[:=]\s*['\"]?)([\w\-]{20,})(['\"]?)"),
        rf"\1{REDACTED}\3",
    ),
    # Tokens
    (re.compile(r"(bearer\s+)([\w\-.]{20,})", re.IGNORECASE), rf"\1{REDACTED}"),
    (
        re.compile(r"((?:refresh[_-]?|session[_-]?)?token\s*[:=]\s*['\"]?)([\w\-.]{20,})(['\"]?)"),
        rf"\1{REDACTED}\3",
    ),
    # Passwords
    (
        re.compile(r"((?:password|pwd)\s*[:=]\s*['\"]?)([^'\"\s]{6,})(['\"]?)", re.IGNORECASE),
        rf"\1{REDACTED}\3",
    ),
    # Database URLs with credentials
    (
        re.compile(r"(postgres(?:ql)?|mysql|mssql)(\+\w+)?://([^:/]+):([^@]+)@"),
        rf"\1\2://\3:{REDACTED}@",
    ),
    # Email addresses keep only the domain
    (re.compile(r"([\w.%+-]+)@([\w.-]+\.[a-zA-Z]{2,})"), r"***@\2"),
    (
        re.compile(r"(authorization\s*:\s*['\"]?)([^'\"]{10,})(['\"]?)", re.IGNORECASE),
        rf"\1{REDACTED}\3",
    ),
]

# Detail keys whose values are never written to logs or the event store.
_SENSITIVE_KEYS = ("password", "token", "secret", "session_id", "code", "key", "hash")


def sanitize_message(message: str) -> str:
    for pattern, replacement in _PATTERNS:
        message = pattern.sub(replacement, message)
    return message


def sanitize_mapping(details: Mapping[str, Any]) -> dict[str, Any]:
    """Redact sensitive keys and scrub string values of a details mapping."""

    sanitized: dict[str, Any] = {}
    for key, value in details.items():
        if any(sensitive in key.lower() for sensitive in _SENSITIVE_KEYS):
            sanitized[key] = REDACTED
        elif isinstance(value, str):
            sanitized[key] = sanitize_message(value)
        elif isinstance(value, Mapping):
            sanitized[key] = sanitize_mapping(value)
        else:
            sanitized[key] = value
    return sanitized


def sanitize_record(record: dict[str, Any]) -> bool:
    if "message" in record:
        record["message"] = sanitize_message(record["message"])
    return True


__all__ = ["REDACTED", "sanitize_mapping", "sanitize_message", "sanitize_record"]
