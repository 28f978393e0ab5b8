# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from .interfaces import (
    CachePort,
    ConfigurationProvider,
    CredentialStore,
    Credentials,
    NotificationPort,
    PasswordHasher,
    SecurityEventQuery,
    SecurityEventSink,
    SessionRevoker,
    WritableConfigurationProvider,
)

__all__ = [
    "CachePort",
    "ConfigurationProvider",
    "CredentialStore",
    "Credentials",
    "NotificationPort",
    "PasswordHasher",
    "SecurityEventQuery",
    "SecurityEventSink",
    "SessionRevoker",
    "WritableConfigurationProvider",
]
