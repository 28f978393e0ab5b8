# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

import asyncio
import json
from datetime import timedelta
from typing import Any, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from account_guard.application.services.lockout_configuration import (
    format_timespan,
    parse_bool,
    parse_int,
    parse_list,
    parse_timespan,
)
from account_guard.infrastructure.db.models import ConfigurationEntry
from account_guard.infrastructure.db.session import SessionFactory, session_scope
from account_guard.shared.errors import ConfigurationError
from account_guard.shared.logging import logger

T = TypeVar("T")

_PARSERS = {
    "int": parse_int,
    "bool": parse_bool,
    "timespan": parse_timespan,
    "list": parse_list,
    "string": str,
}


def _data_type_of(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, timedelta):
        return "timespan"
    if isinstance(value, (list, tuple)):
        return "list"
    return "string"


def _serialize(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, timedelta):
        return format_timespan(value)
    if isinstance(value, (list, tuple)):
        return json.dumps(
            [format_timespan(item) if isinstance(item, timedelta) else item for item in value]
        )
    return str(value)


class SqlAlchemyConfigurationProvider:
    """Typed key/value configuration stored as strings, grouped by category."""

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def get_configuration(self, category: str, key: str, default: T) -> T:
        try:
            entry = await asyncio.to_thread(self._load, category, key)
        except SQLAlchemyError as exc:
            raise ConfigurationError(category, key) from exc

        if entry is None:
            return default
        value, data_type = entry
        parser = _PARSERS.get(data_type, str)
        try:
            return parser(value)
        except (TypeError, ValueError):
            logger.warning(f"config: {category}.{key} is not a valid {data_type}, using default")
            return default

    async def set_configuration(self, category: str, key: str, value: Any) -> None:
        try:
            await asyncio.to_thread(self._store, category, key, value)
        except SQLAlchemyError as exc:
            raise ConfigurationError(category, key) from exc

    def _load(self, category: str, key: str) -> tuple[str, str] | None:
        with session_scope(self._session_factory) as session:
            row = session.scalars(
                select(ConfigurationEntry)
                .where(ConfigurationEntry.category == category)
                .where(ConfigurationEntry.key == key)
            ).first()
            return (row.value, row.data_type) if row else None

    def _store(self, category: str, key: str, value: Any) -> None:
        with session_scope(self._session_factory) as session:
            row = session.scalars(
                select(ConfigurationEntry)
                .where(ConfigurationEntry.category == category)
                .where(ConfigurationEntry.key == key)
            ).first()
            if row is None:
                row = ConfigurationEntry(category=category, key=key)
                session.add(row)
            row.value = _serialize(value)
            row.data_type = _data_type_of(value)


__all__ = ["SqlAlchemyConfigurationProvider"]
