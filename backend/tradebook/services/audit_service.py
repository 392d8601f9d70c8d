# Overview: Service-layer operations for the audit trail; append-only, written inside the caller's unit of work.

"""
Audit Recorder Invariants (authoritative)

- Append-only: entries are never updated or deleted.
- Write-path entries are flushed inside the same transaction as the change
  they record; a failure aborts the whole unit of work.
- Read-path entries (e.g. viewing a tax rule) are best-effort: written in a
  SAVEPOINT so a failure is logged and dropped without poisoning the
  surrounding transaction.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy.exc import SQLAlchemyError

from ..models import AuditLog
from ..validation import MAX_PAGE_SIZE
from .unit_of_work import ExecutionContext, run_in_tx

logger = logging.getLogger(__name__)


def _serialize_details(details) -> str | None:
    if details is None:
        return None
    if isinstance(details, str):
        return details
    return json.dumps(details, default=str, sort_keys=True)


def _build_entry(ctx: ExecutionContext, action, entity_id, entity_name, details, user_id) -> AuditLog:
    if not action:
        raise ValueError("audit action is required")
    return AuditLog(
        user_id=user_id if user_id is not None else ctx.user_id,
        action=action,
        entity_id=str(entity_id) if entity_id is not None else None,
        entity_name=entity_name,
        details=_serialize_details(details),
    )


def log_action(
    ctx: ExecutionContext,
    action: str,
    entity_id,
    entity_name: str | None = None,
    details=None,
    user_id: int | None = None,
) -> AuditLog:
    """
    Append an audit entry in the caller's unit of work.

    Must run inside run_in_tx(); the entry commits or rolls back with the
    change it documents.
    """
    uow = ctx.require_uow()
    entry = _build_entry(ctx, action, entity_id, entity_name, details, user_id)
    uow.session.add(entry)
    uow.session.flush()
    return entry


def log_action_best_effort(
    ctx: ExecutionContext,
    action: str,
    entity_id,
    entity_name: str | None = None,
    details=None,
    user_id: int | None = None,
) -> AuditLog | None:
    """
    Append an audit entry for a read path; never raises on store failure.

    Inside a unit of work the entry goes into a SAVEPOINT. Outside one, it
    gets its own short unit of work.
    """
    if not ctx.in_transaction:
        try:
            return run_in_tx(
                ctx,
                lambda tx: log_action_best_effort(tx, action, entity_id, entity_name, details, user_id),
            )
        except Exception:
            logger.exception("best-effort audit commit failed for action=%s entity=%s", action, entity_id)
            return None

    session = ctx.session
    try:
        with session.begin_nested():
            entry = _build_entry(ctx, action, entity_id, entity_name, details, user_id)
            session.add(entry)
        return entry
    except SQLAlchemyError:
        logger.exception("best-effort audit write failed for action=%s entity=%s", action, entity_id)
        return None


def list_audit_logs(
    ctx: ExecutionContext,
    page: int = 1,
    limit: int = 20,
    action: str | None = None,
) -> tuple[list[AuditLog], int]:
    """Audit entries newest first, optionally filtered by action."""
    page = max(1, page)
    limit = min(max(1, limit), MAX_PAGE_SIZE)

    query = ctx.session.query(AuditLog)
    if action:
        query = query.filter(AuditLog.action == action)

    total = query.count()
    items = (
        query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total
