# Overview: Locking primitives, DB error translation and whole-operation retry.

from __future__ import annotations

import hashlib
import logging
import time

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError, UnboundExecutionError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import (
    DeadlineExceeded,
    DuplicateReference,
    InvariantViolation,
    TransientStoreError,
)
from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id columns on Product and ApprovalRequest cover SQLite.
    """
    return query.with_for_update()


def dialect_name(session) -> str:
    """Dialect of the session's bind, or "" when it has none (fake sessions in tests)."""
    try:
        return session.get_bind().dialect.name
    except (AttributeError, UnboundExecutionError):
        return ""


def advisory_lock_key(name: str) -> int:
    """
    Stable signed 64-bit key for pg_advisory_xact_lock.

    hash() is salted per process, so two workers would disagree on the key.
    """
    digest = hashlib.sha256(name.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


def acquire_advisory_xact_lock(session, name: str) -> bool:
    """
    Take a transaction-scoped advisory lock named `name`.

    PostgreSQL only; released automatically at commit/rollback. Returns False
    on other dialects, where callers fall back to the engine's own write
    serialization plus a unique index.
    """
    if dialect_name(session) != "postgresql":
        return False
    session.execute(
        text("SELECT pg_advisory_xact_lock(:key)"),
        {"key": advisory_lock_key(name)},
    )
    return True


def apply_statement_timeout(session, seconds: float | None) -> None:
    """Bound every statement in the current transaction by the remaining deadline (PostgreSQL)."""
    if seconds is None or dialect_name(session) != "postgresql":
        return
    millis = max(1, int(seconds * 1000))
    session.execute(text(f"SET LOCAL statement_timeout = {millis}"))


def translate_db_error(exc: SQLAlchemyError) -> Exception:
    """
    Map a raw SQLAlchemy failure onto the ledger error taxonomy.

    Errors that do not fit a taxonomy value are returned unchanged.
    """
    if isinstance(exc, StaleDataError):
        return TransientStoreError("concurrent modification detected; retry the operation")
    if isinstance(exc, OperationalError):
        return TransientStoreError(f"database temporarily unavailable: {exc.orig}")
    if isinstance(exc, IntegrityError):
        message = str(exc.orig).lower()
        if "unique" in message or "duplicate" in message:
            return DuplicateReference(f"duplicate value violates a unique constraint: {exc.orig}")
        return InvariantViolation(f"integrity constraint violated: {exc.orig}")
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return TransientStoreError("database connection lost; retry the operation")
    return exc


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, sleep=time.sleep):
    """
    Execute a whole operation with retry on transient store failures.

    Retries TransientStoreError (deadlocks, lock timeouts, lost optimistic
    races) and raw OperationalError / StaleDataError. DeadlineExceeded is
    never retried: the caller's deadline has already passed.
    """
    for attempt in range(attempts):
        try:
            return func()
        except DeadlineExceeded:
            raise
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise translate_db_error(exc) from exc
            logger.warning("transient store error (attempt %s/%s): %s", attempt + 1, attempts, exc)
        except TransientStoreError as exc:
            if attempt >= attempts - 1:
                raise
            logger.warning("transient store error (attempt %s/%s): %s", attempt + 1, attempts, exc)
        sleep(backoff_base * (2 ** attempt))
