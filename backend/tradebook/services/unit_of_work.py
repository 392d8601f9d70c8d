# Overview: Explicit execution context and transaction propagation for ledger operations.

"""
Unit of Work

WHY: Every mutation in the ledger (stock change, invoice, approval status,
audit entry) must commit or roll back together. Instead of each service
calling db.session.commit() on its own, the caller opens one unit of work
with run_in_tx() and threads the ExecutionContext it receives through every
nested call.

DESIGN NOTE:
- ExecutionContext is immutable. run_in_tx() derives a child context that
  carries the UnitOfWork; the parent never sees it.
- Nested run_in_tx() calls reuse the active unit of work. Only the outermost
  call commits or rolls back.
- after_commit callbacks run only once the outermost commit succeeded.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from ..errors import DeadlineExceeded, LedgerError
from ..extensions import db
from .concurrency import apply_statement_timeout, translate_db_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


class UnitOfWork:
    """Handle on the active transaction plus its post-commit hooks."""

    def __init__(self, session):
        self.session = session
        self._after_commit: list[Callable[[], Any]] = []

    def after_commit(self, callback: Callable[[], Any]) -> None:
        self._after_commit.append(callback)

    def run_after_commit(self) -> None:
        callbacks, self._after_commit = self._after_commit, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("after-commit callback failed")

    def discard(self) -> None:
        self._after_commit = []


@dataclass(frozen=True)
class ExecutionContext:
    """
    Principal, deadline, collaborators and the active unit of work.

    root_session lets tests inject a fake session; routes leave it unset and
    the context falls back to db.session.
    """
    user_id: int | None = None
    role: str | None = None
    deadline: float | None = None
    root_session: Any = None
    notifier: Any = None
    uow: UnitOfWork | None = None

    @classmethod
    def with_timeout(cls, seconds: float | None, **kwargs) -> "ExecutionContext":
        deadline = time.monotonic() + seconds if seconds else None
        return cls(deadline=deadline, **kwargs)

    @property
    def session(self):
        if self.uow is not None:
            return self.uow.session
        if self.root_session is not None:
            return self.root_session
        return db.session

    @property
    def in_transaction(self) -> bool:
        return self.uow is not None

    def require_uow(self) -> UnitOfWork:
        if self.uow is None:
            raise RuntimeError("operation requires an active unit of work (use run_in_tx)")
        return self.uow

    def remaining_seconds(self) -> float | None:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def check_deadline(self) -> None:
        remaining = self.remaining_seconds()
        if remaining is not None and remaining <= 0:
            raise DeadlineExceeded("operation deadline exceeded")

    def bind(self, uow: UnitOfWork) -> "ExecutionContext":
        return replace(self, uow=uow)


def run_in_tx(ctx: ExecutionContext, fn: Callable[[ExecutionContext], T]) -> T:
    """
    Run fn inside one database transaction.

    Commits when fn returns, rolls back on any exception. Ledger errors are
    re-raised unchanged; raw SQLAlchemy errors are translated into the
    ledger taxonomy (TransientStoreError, DuplicateReference, ...).
    """
    if ctx.uow is not None:
        return fn(ctx)

    ctx.check_deadline()
    session = ctx.session
    uow = UnitOfWork(session)
    tx_ctx = ctx.bind(uow)

    try:
        apply_statement_timeout(session, tx_ctx.remaining_seconds())
        result = fn(tx_ctx)
        session.flush()
        tx_ctx.check_deadline()
        session.commit()
    except LedgerError:
        uow.discard()
        session.rollback()
        raise
    except SQLAlchemyError as exc:
        uow.discard()
        session.rollback()
        translated = translate_db_error(exc)
        if translated is exc:
            raise
        raise translated from exc
    except BaseException:
        uow.discard()
        session.rollback()
        raise

    uow.run_after_commit()
    return result
