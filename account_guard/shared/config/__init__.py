# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from .settings import (
    AppConfig,
    CacheConfig,
    DatabaseConfig,
    FailureMode,
    LockoutEngineConfig,
    ObservabilityConfig,
    ResilienceConfig,
    load_config,
)

__all__ = [
    "AppConfig",
    "CacheConfig",
    "DatabaseConfig",
    "FailureMode",
    "LockoutEngineConfig",
    "ObservabilityConfig",
    "ResilienceConfig",
    "load_config",
]
