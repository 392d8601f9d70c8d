# Overview: Service-layer operations for the approval state machine and its side effects.

"""
Approval Workflow Invariants (authoritative)

STATE MACHINE:
    PENDING -> APPROVED   (side effects executed exactly once)
    PENDING -> REJECTED
APPROVED and REJECTED are terminal.

- approve/reject lock the ApprovalRequest row before reading its status.
  Lock order is always: approval request, then order, then products in
  item order.
- The status write is flushed before any side effect. The version_id guard
  turns a racing approver that slipped past the row lock into
  AlreadyResolved.
- Side effects (stock, invoice, audit) share the approval's unit of work:
  any failure rolls back the status change too.
- At most one PENDING (or APPROVED) request exists per reference.
- Snapshots are read tolerantly: missing keys mean "not set".
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm.exc import StaleDataError

from ..errors import AlreadyResolved, DuplicateReference, NotFound, ValidationError
from ..models import ApprovalRequest, Expense, Invoice, Order, Product, TaxRule
from ..models.approvals import (
    APPROVAL_STATUS_APPROVED,
    APPROVAL_STATUS_PENDING,
    APPROVAL_STATUS_REJECTED,
    APPROVAL_STATUSES,
    REQUEST_TYPE_CREATE_EXPENSE,
    REQUEST_TYPE_CREATE_ORDER,
    REQUEST_TYPE_CREATE_PRODUCT,
    REQUEST_TYPES,
)
from ..models.audit import (
    ACTION_APPROVE_REQUEST,
    ACTION_CREATE_APPROVAL_REQUEST,
    ACTION_CREATE_INVOICE_FROM_APPROVAL,
    ACTION_REJECT_REQUEST,
)
from ..models.finance import REF_TYPE_EXPENSE, REF_TYPE_ORDER_EXPORT, REF_TYPE_ORDER_IMPORT
from ..models.inventory import (
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_PENDING_APPROVAL,
    ORDER_STATUS_REJECTED,
    ORDER_TYPE_IMPORT,
)
from ..money import ZERO, quantize_money
from ..time_utils import utc_today, utcnow
from ..validation import MAX_PAGE_SIZE, parse_decimal, parse_int, parse_reference_id
from . import audit_service, inventory_service, invoice_service, tax_service
from .concurrency import lock_for_update
from .unit_of_work import ExecutionContext, run_in_tx

logger = logging.getLogger(__name__)


# =============================================================================
# REQUEST REFERENCES
# =============================================================================

_REFERENCE_MODELS = {
    REQUEST_TYPE_CREATE_ORDER: Order,
    REQUEST_TYPE_CREATE_PRODUCT: Product,
    REQUEST_TYPE_CREATE_EXPENSE: Expense,
}


@dataclass(frozen=True)
class RequestReference:
    """
    Typed pointer from an approval request to the entity it approves.

    CREATE_ORDER -> orders.id, CREATE_PRODUCT -> products.id,
    CREATE_EXPENSE -> expenses.id.
    """
    request_type: str
    reference_id: int

    @classmethod
    def parse(cls, request_type, reference_id) -> "RequestReference":
        if request_type not in REQUEST_TYPES:
            raise ValidationError(f"request_type must be one of: {', '.join(sorted(REQUEST_TYPES))}")
        return cls(request_type=request_type, reference_id=parse_reference_id(reference_id))

    @property
    def model(self):
        return _REFERENCE_MODELS[self.request_type]

    def resolve(self, session):
        """Referenced row, or NotFound."""
        entity = session.get(self.model, self.reference_id)
        if entity is None:
            label = self.model.__name__.lower()
            raise NotFound(f"{label} {self.reference_id} not found")
        return entity


# =============================================================================
# REQUEST CREATION
# =============================================================================

def create_approval_request(
    ctx: ExecutionContext,
    request_type: str,
    reference_id,
    snapshot: dict | None,
    requester_id: int | None,
) -> ApprovalRequest:
    """
    Open a PENDING request for an existing order, product or expense.

    Raises ValidationError / InvalidReference on bad input, NotFound when the
    reference is missing, DuplicateReference when the reference already has
    a pending or approved request.
    """
    reference = RequestReference.parse(request_type, reference_id)
    if snapshot is None:
        snapshot = {}
    if not isinstance(snapshot, dict):
        raise ValidationError("request snapshot must be an object")
    request_data = json.dumps(snapshot, default=str, sort_keys=True)

    def _op(tx: ExecutionContext) -> ApprovalRequest:
        session = tx.session
        entity = reference.resolve(session)

        if reference.request_type == REQUEST_TYPE_CREATE_ORDER and entity.status != ORDER_STATUS_PENDING_APPROVAL:
            raise AlreadyResolved(f"order {entity.id} is already {entity.status}")

        existing = (
            session.query(ApprovalRequest.id)
            .filter(
                ApprovalRequest.request_type == reference.request_type,
                ApprovalRequest.reference_id == reference.reference_id,
                ApprovalRequest.status.in_([APPROVAL_STATUS_PENDING, APPROVAL_STATUS_APPROVED]),
            )
            .first()
        )
        if existing:
            raise DuplicateReference(
                f"{reference.request_type} request for reference {reference.reference_id} already exists"
            )

        request = ApprovalRequest(
            request_type=reference.request_type,
            reference_id=reference.reference_id,
            request_data=request_data,
            status=APPROVAL_STATUS_PENDING,
            requested_by=requester_id,
        )
        session.add(request)
        session.flush()

        audit_service.log_action(
            tx,
            ACTION_CREATE_APPROVAL_REQUEST,
            request.id,
            entity_name=reference.request_type,
            details={"request_type": reference.request_type, "reference_id": reference.reference_id},
            user_id=requester_id,
        )
        return request

    return run_in_tx(ctx, _op)


# =============================================================================
# EXECUTORS
# =============================================================================

def _snapshot_decimal(snapshot: dict, key: str) -> Decimal:
    value = snapshot.get(key)
    if value in (None, ""):
        return ZERO
    return parse_decimal(value, key)


def _resolve_order_tax(tx: ExecutionContext, snapshot: dict) -> TaxRule | None:
    """
    Tax rule for an order approval.

    tax_rule_id pins a specific rule; tax_type picks the rule active on the
    approval date. Neither key means no tax.
    """
    rule_id = snapshot.get("tax_rule_id")
    if rule_id not in (None, ""):
        rule_id = parse_int(rule_id, "tax_rule_id")
        rule = tx.session.get(TaxRule, rule_id)
        if rule is None:
            raise NotFound(f"tax rule {rule_id} not found")
        return rule

    tax_type = snapshot.get("tax_type")
    if tax_type:
        return tax_service.resolve_active_rule(tx, tax_type, utc_today())
    return None


def _log_invoice(tx: ExecutionContext, request: ApprovalRequest, invoice: Invoice, approver_id) -> None:
    audit_service.log_action(
        tx,
        ACTION_CREATE_INVOICE_FROM_APPROVAL,
        invoice.id,
        entity_name=invoice.invoice_no,
        details={
            "approval_id": request.id,
            "reference_type": invoice.reference_type,
            "reference_id": invoice.reference_id,
            "total_amount": str(invoice.total_amount),
        },
        user_id=approver_id,
    )


def _execute_order(tx: ExecutionContext, request: ApprovalRequest, approver_id) -> Invoice:
    session = tx.session
    order = (
        lock_for_update(session.query(Order).filter(Order.id == request.reference_id))
        .populate_existing()
        .first()
    )
    if order is None:
        raise NotFound(f"order {request.reference_id} not found")
    if order.status != ORDER_STATUS_PENDING_APPROVAL:
        raise AlreadyResolved(f"order {order.id} is already {order.status}")

    sign = 1 if order.type == ORDER_TYPE_IMPORT else -1
    subtotal = ZERO
    for item in order.items:
        inventory_service.adjust_stock(tx, item.product_id, sign * item.quantity, order_id=order.id)
        subtotal += Decimal(item.unit_price) * item.quantity
        tx.check_deadline()

    order.status = ORDER_STATUS_COMPLETED

    snapshot = request.snapshot
    side_fees = _snapshot_decimal(snapshot, "side_fees")
    rule = _resolve_order_tax(tx, snapshot)
    tax_amount = quantize_money(subtotal * Decimal(rule.rate)) if rule is not None else ZERO

    invoice = invoice_service.create_invoice(
        tx,
        reference_type=REF_TYPE_ORDER_IMPORT if order.type == ORDER_TYPE_IMPORT else REF_TYPE_ORDER_EXPORT,
        reference_id=order.id,
        subtotal=subtotal,
        tax_amount=tax_amount,
        side_fees=side_fees,
        tax_rule_id=rule.id if rule is not None else None,
        approved_by=approver_id,
        approved_at=request.approved_at,
        note=order.note or f"Order {order.order_code}",
    )
    _log_invoice(tx, request, invoice, approver_id)
    return invoice


def _execute_expense(tx: ExecutionContext, request: ApprovalRequest, approver_id) -> Invoice:
    session = tx.session
    expense = session.get(Expense, request.reference_id)
    if expense is None:
        raise NotFound(f"expense {request.reference_id} not found")

    already_invoiced = (
        session.query(Invoice.id)
        .filter(Invoice.reference_type == REF_TYPE_EXPENSE, Invoice.reference_id == expense.id)
        .first()
    )
    if already_invoiced:
        raise AlreadyResolved(f"expense {expense.id} is already invoiced")

    invoice = invoice_service.create_invoice(
        tx,
        reference_type=REF_TYPE_EXPENSE,
        reference_id=expense.id,
        subtotal=Decimal(expense.converted_amount_usd),
        tax_amount=Decimal(expense.vat_amount) + Decimal(expense.fct_amount),
        side_fees=ZERO,
        approved_by=approver_id,
        approved_at=request.approved_at,
        note=expense.description,
    )
    _log_invoice(tx, request, invoice, approver_id)
    return invoice


def _execute_product(tx: ExecutionContext, request: ApprovalRequest, approver_id) -> None:
    if tx.session.get(Product, request.reference_id) is None:
        raise NotFound(f"product {request.reference_id} not found")
    return None


_EXECUTORS = {
    REQUEST_TYPE_CREATE_ORDER: _execute_order,
    REQUEST_TYPE_CREATE_EXPENSE: _execute_expense,
    REQUEST_TYPE_CREATE_PRODUCT: _execute_product,
}


# =============================================================================
# STATE TRANSITIONS
# =============================================================================

def _lock_pending_request(tx: ExecutionContext, approval_id) -> ApprovalRequest:
    approval_id = parse_reference_id(approval_id)
    request = (
        lock_for_update(tx.session.query(ApprovalRequest).filter(ApprovalRequest.id == approval_id))
        .populate_existing()
        .first()
    )
    if request is None:
        raise NotFound(f"approval request {approval_id} not found")
    if request.status != APPROVAL_STATUS_PENDING:
        raise AlreadyResolved(f"approval request {approval_id} is already {request.status}")
    return request


def _flush_status(tx: ExecutionContext, request: ApprovalRequest) -> None:
    """
    Flush the status change under the version_id guard.

    A failed flush expires the instance, so the id is read beforehand.
    """
    request_id = request.id
    try:
        tx.session.flush()
    except StaleDataError as exc:
        raise AlreadyResolved(f"approval request {request_id} was resolved concurrently") from exc


def approve_request(ctx: ExecutionContext, approval_id, approver_id: int | None) -> ApprovalRequest:
    """
    Approve a PENDING request and execute its side effects exactly once.

    CREATE_ORDER: stock adjusted per line, order COMPLETED, invoice created.
    CREATE_EXPENSE: invoice from the expense's computed totals.
    CREATE_PRODUCT: status change only.
    """
    def _op(tx: ExecutionContext) -> ApprovalRequest:
        request = _lock_pending_request(tx, approval_id)

        request.status = APPROVAL_STATUS_APPROVED
        request.approved_by = approver_id
        request.approved_at = utcnow()
        _flush_status(tx, request)
        tx.check_deadline()

        invoice = _EXECUTORS[request.request_type](tx, request, approver_id)
        tx.check_deadline()

        details = {"request_type": request.request_type, "reference_id": request.reference_id}
        if invoice is not None:
            details["invoice_no"] = invoice.invoice_no
        audit_service.log_action(
            tx,
            ACTION_APPROVE_REQUEST,
            request.id,
            entity_name=request.request_type,
            details=details,
            user_id=approver_id,
        )
        return request

    request = run_in_tx(ctx, _op)
    logger.info("approval request %s approved by user %s", request.id, approver_id)
    return request


def reject_request(
    ctx: ExecutionContext,
    approval_id,
    approver_id: int | None,
    reason: str | None = None,
) -> ApprovalRequest:
    """Reject a PENDING request. A rejected CREATE_ORDER also marks the order REJECTED."""
    if reason is not None and not isinstance(reason, str):
        raise ValidationError("reason must be a string")
    reason = reason.strip() if reason else None

    def _op(tx: ExecutionContext) -> ApprovalRequest:
        request = _lock_pending_request(tx, approval_id)

        request.status = APPROVAL_STATUS_REJECTED
        request.approved_by = approver_id
        request.approved_at = utcnow()
        request.rejection_reason = reason
        _flush_status(tx, request)

        if request.request_type == REQUEST_TYPE_CREATE_ORDER:
            order = (
                lock_for_update(tx.session.query(Order).filter(Order.id == request.reference_id))
                .populate_existing()
                .first()
            )
            if order is not None and order.status == ORDER_STATUS_PENDING_APPROVAL:
                order.status = ORDER_STATUS_REJECTED

        audit_service.log_action(
            tx,
            ACTION_REJECT_REQUEST,
            request.id,
            entity_name=request.request_type,
            details={
                "request_type": request.request_type,
                "reference_id": request.reference_id,
                "reason": reason,
            },
            user_id=approver_id,
        )
        return request

    request = run_in_tx(ctx, _op)
    logger.info("approval request %s rejected by user %s", request.id, approver_id)
    return request


# =============================================================================
# READS
# =============================================================================

def get_approval_request(ctx: ExecutionContext, approval_id) -> ApprovalRequest:
    approval_id = parse_reference_id(approval_id)
    request = ctx.session.get(ApprovalRequest, approval_id)
    if request is None:
        raise NotFound(f"approval request {approval_id} not found")
    return request


def list_approval_requests(
    ctx: ExecutionContext,
    status: str | None = None,
    page: int = 1,
    limit: int = 20,
    request_type: str | None = None,
) -> tuple[list[ApprovalRequest], int]:
    """Requests newest first; unknown status or type is a ValidationError."""
    page = max(1, page)
    limit = min(max(1, limit), MAX_PAGE_SIZE)

    query = ctx.session.query(ApprovalRequest)
    if status:
        if status not in APPROVAL_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(sorted(APPROVAL_STATUSES))}")
        query = query.filter(ApprovalRequest.status == status)
    if request_type:
        if request_type not in REQUEST_TYPES:
            raise ValidationError(f"request_type must be one of: {', '.join(sorted(REQUEST_TYPES))}")
        query = query.filter(ApprovalRequest.request_type == request_type)

    total = query.count()
    items = (
        query.order_by(ApprovalRequest.created_at.desc(), ApprovalRequest.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total
