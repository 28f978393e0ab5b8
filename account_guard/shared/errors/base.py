# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, cast


@dataclass(slots=True)
class AppError(Exception):
    code: str
    context: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        Exception.__init__(self, self.code)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.code}
        if self.context:
            payload["context"] = dict(self.context)
        return payload


class DomainError(AppError):
    def __init__(
        self,
        *,
        code: str | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        resolved_code = code or cast(str, getattr(self, "code", "domain_error"))
        super().__init__(code=resolved_code, context=context)


class InfrastructureError(AppError):
    def __init__(
        self,
        code: str = "infrastructure_error",
        *,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(code=code, context=context)


class StorageError(InfrastructureError):
    def __init__(self, operation: str, *, context: Mapping[str, Any] | None = None) -> None:
        super().__init__(
            code="storage_unavailable",
            context={"operation": operation, **(context or {})},
        )


class ConcurrencyConflictError(InfrastructureError):
    def __init__(self, account_id: int, expected_version: int) -> None:
        super().__init__(
            code="concurrent_update",
            context={"account_id": account_id, "expected_version": expected_version},
        )


class ConfigurationError(InfrastructureError):
    def __init__(self, category: str, key: str) -> None:
        super().__init__(
            code="configuration_unavailable",
            context={"category": category, "key": key},
        )
