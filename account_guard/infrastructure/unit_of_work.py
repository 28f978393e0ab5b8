# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""Database unit of work implementation."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from account_guard.domain.lockout import AccountUpdate
from account_guard.infrastructure.db.session import SessionFactory
from account_guard.infrastructure.repositories.accounts import apply_account_update
from account_guard.shared.errors import ConcurrencyConflictError
from account_guard.shared.logging import logger


@dataclass(slots=True)
class SqlAlchemyUnitOfWork(AbstractContextManager):
    """SQLAlchemy-backed unit of work.

    Also accepts staged lockout writes so a caller can persist a counter reset
    in the same transaction as its own changes.
    """

    session_factory: SessionFactory
    _session: Session | None = field(default=None, init=False, repr=False)
    _on_commit: list[Callable[[], None]] = field(default_factory=list, init=False, repr=False)

    def __enter__(self) -> SqlAlchemyUnitOfWork:
        self._session = self.session_factory()
        logger.debug("uow: session opened")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        assert self._session is not None
        try:
            if exc:
                logger.warning(f"uow: rollback due to {exc_type}")
                self.rollback()
            else:
                self.commit()
        except Exception:
            logger.exception("uow: exception while finalising")
            self.rollback()
            raise
        finally:
            self._session.close()
            logger.debug("uow: session closed")
            self._session = None

    @property
    def session(self) -> Session:
        if self._session is None:
            msg = "UnitOfWork session accessed before entering context"
            raise RuntimeError(msg)
        return self._session

    def stage(self, update: AccountUpdate) -> None:
        if not apply_account_update(self.session, update):
            raise ConcurrencyConflictError(update.account_id, update.expected_version)
        logger.debug(f"uow: staged lockout write account_id={update.account_id}")

    def after_commit(self, callback: Callable[[], None]) -> None:
        self._on_commit.append(callback)

    def commit(self) -> None:
        if self._session is None:
            raise RuntimeError("UnitOfWork not started")
        self._session.commit()
        callbacks, self._on_commit = self._on_commit, []
        for callback in callbacks:
            callback()
        logger.debug("uow: committed")

    def rollback(self) -> None:
        self._on_commit = []
        if self._session is None:
            return
        self._session.rollback()
        logger.debug("uow: rolled back")


__all__ = ["SqlAlchemyUnitOfWork"]
