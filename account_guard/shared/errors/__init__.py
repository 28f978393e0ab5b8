# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from .base import (
    AppError,
    ConcurrencyConflictError,
    ConfigurationError,
    DomainError,
    InfrastructureError,
    StorageError,
)

__all__ = [
    "AppError",
    "ConcurrencyConflictError",
    "ConfigurationError",
    "DomainError",
    "InfrastructureError",
    "StorageError",
]
