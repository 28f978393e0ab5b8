# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

FailureMode = Literal["fail-open", "fail-closed"]


class DatabaseConfig(BaseModel):
    url: str = Field("sqlite:///account_guard.db", alias="DATABASE_URL")
    pool_size: int = Field(10, ge=1, alias="DATABASE_POOL_SIZE")
    max_overflow: int = Field(5, ge=0, alias="DATABASE_MAX_OVERFLOW")
    pool_timeout: float = Field(30.0, ge=0.1, alias="DATABASE_POOL_TIMEOUT")

    model_config = ConfigDict(validate_by_name=True)


class CacheConfig(BaseModel):
    status_ttl_seconds: int = Field(1800, ge=1, alias="LOCKOUT_STATUS_CACHE_TTL")

    model_config = ConfigDict(validate_by_name=True)


class ResilienceConfig(BaseModel):
    operation_timeout: float = Field(5.0, ge=0.01, alias="RESILIENCE_TIMEOUT")
    conflict_retries: int = Field(3, ge=0, alias="RESILIENCE_CONFLICT_RETRIES")
    backoff_base: float = Field(0.01, ge=0.0, alias="RESILIENCE_BACKOFF_BASE")
    backoff_cap: float = Field(0.2, ge=0.0, alias="RESILIENCE_BACKOFF_CAP")
    circuit_fail_threshold: int = Field(5, ge=1, alias="RESILIENCE_CIRCUIT_THRESHOLD")
    circuit_reset_timeout: float = Field(30.0, ge=1.0, alias="RESILIENCE_CIRCUIT_RESET")

    model_config = ConfigDict(validate_by_name=True)


class ObservabilityConfig(BaseModel):
    metrics_enabled: bool = Field(True, alias="METRICS_ENABLED")
    service_name: str = Field("account-guard", alias="SERVICE_NAME")

    model_config = ConfigDict(validate_by_name=True)

    @field_validator("metrics_enabled", mode="before")
    @classmethod
    def _parse_bool(cls, value: str | bool) -> bool:
        if isinstance(value, str):
            return value.lower() in ("1", "true", "yes")
        return bool(value)


class LockoutEngineConfig(BaseModel):
    # What to do when the account store or configuration provider is unavailable.
    failure_mode: FailureMode = Field("fail-open", alias="LOCKOUT_FAILURE_MODE")
    configuration_category: str = Field("Lockout", alias="LOCKOUT_CONFIG_CATEGORY")

    model_config = ConfigDict(validate_by_name=True)

    @field_validator("failure_mode", mode="before")
    @classmethod
    def _normalise_mode(cls, value: str) -> str:
        if isinstance(value, str):
            return value.strip().lower().replace("_", "-")
        return value


def _database_config_factory() -> DatabaseConfig:
    return DatabaseConfig()  # type: ignore[call-arg]


def _cache_config_factory() -> CacheConfig:
    return CacheConfig()  # type: ignore[call-arg]


def _resilience_config_factory() -> ResilienceConfig:
    return ResilienceConfig()  # type: ignore[call-arg]


def _observability_config_factory() -> ObservabilityConfig:
    return ObservabilityConfig()  # type: ignore[call-arg]


def _lockout_config_factory() -> LockoutEngineConfig:
    return LockoutEngineConfig()  # type: ignore[call-arg]


class AppConfig(BaseSettings):
    app_env: str = Field("development", alias="APP_ENV")
    debug_logging: bool = Field(False, alias="DEBUG_LOGGING")

    database: DatabaseConfig = Field(default_factory=_database_config_factory)
    cache: CacheConfig = Field(default_factory=_cache_config_factory)
    resilience: ResilienceConfig = Field(default_factory=_resilience_config_factory)
    observability: ObservabilityConfig = Field(default_factory=_observability_config_factory)
    lockout: LockoutEngineConfig = Field(default_factory=_lockout_config_factory)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        validate_assignment=True,
        extra="ignore",
    )

    @field_validator("debug_logging", mode="before")
    @classmethod
    def _parse_debug_logging(cls, value: str | bool) -> bool:
        if isinstance(value, str):
            return value.lower() in ("1", "true", "yes")
        return bool(value)

    def is_production(self) -> bool:
        return self.app_env.lower() in ("production", "prod")


@lru_cache(maxsize=1)
def load_config() -> AppConfig:
    return AppConfig()


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
