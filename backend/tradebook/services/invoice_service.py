# Overview: Service-layer operations for invoices; sequential numbering under concurrent approvals.

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from ..errors import NotFound, TransientStoreError, ValidationError
from ..models import Invoice
from ..models.approvals import APPROVAL_STATUS_APPROVED
from ..models.finance import INVOICE_REFERENCE_TYPES
from ..money import ZERO, quantize_money
from ..time_utils import utc_today, utcnow
from ..validation import MAX_PAGE_SIZE
from .concurrency import acquire_advisory_xact_lock
from .unit_of_work import ExecutionContext

logger = logging.getLogger(__name__)

INVOICE_PREFIX = "INV"
INVOICE_SEQ_PAD = 5


def invoice_prefix(on_date: date) -> str:
    return f"{INVOICE_PREFIX}-{on_date.strftime('%Y%m%d')}-"


def next_invoice_no(ctx: ExecutionContext, on_date: date | None = None) -> str:
    """
    Allocate the next invoice number for a day: INV-YYYYMMDD-NNNNN.

    Must run inside the unit of work that inserts the invoice. On PostgreSQL
    a transaction-scoped advisory lock keyed on the day's prefix serializes
    allocators until commit. Elsewhere the unique index on invoice_no is the
    backstop: a collision surfaces from create_invoice() as a retryable
    TransientStoreError.

    Numbers come from a count of the day's invoices, so a rolled-back
    allocation leaves no gap.
    """
    uow = ctx.require_uow()
    on_date = on_date or utc_today()
    prefix = invoice_prefix(on_date)

    acquire_advisory_xact_lock(uow.session, f"invoice_no:{prefix}")

    count = (
        uow.session.query(Invoice)
        .filter(Invoice.invoice_no.like(f"{prefix}%"))
        .count()
    )
    return f"{prefix}{count + 1:0{INVOICE_SEQ_PAD}d}"


def create_invoice(
    ctx: ExecutionContext,
    *,
    reference_type: str,
    reference_id: int,
    subtotal: Decimal,
    tax_amount: Decimal = ZERO,
    side_fees: Decimal = ZERO,
    tax_rule_id: int | None = None,
    approved_by: int | None = None,
    approved_at: datetime | None = None,
    note: str | None = None,
    on_date: date | None = None,
) -> Invoice:
    """
    Persist an approved invoice. total_amount = subtotal + tax + side fees.

    approved_at is copied from the triggering approval request.

    Only the approval workflow calls this.
    """
    uow = ctx.require_uow()
    if reference_type not in INVOICE_REFERENCE_TYPES:
        raise ValidationError(f"unknown invoice reference type {reference_type!r}")

    subtotal = quantize_money(subtotal)
    tax_amount = quantize_money(tax_amount)
    side_fees = quantize_money(side_fees)

    invoice = Invoice(
        invoice_no=next_invoice_no(ctx, on_date),
        reference_type=reference_type,
        reference_id=reference_id,
        tax_rule_id=tax_rule_id,
        subtotal=subtotal,
        tax_amount=tax_amount,
        side_fees=side_fees,
        total_amount=subtotal + tax_amount + side_fees,
        approval_status=APPROVAL_STATUS_APPROVED,
        approved_by=approved_by,
        approved_at=approved_at or utcnow(),
        note=note,
    )
    uow.session.add(invoice)
    try:
        uow.session.flush()
    except IntegrityError as exc:
        logger.warning("invoice number collision on %s", invoice.invoice_no)
        raise TransientStoreError(f"invoice number {invoice.invoice_no} already allocated; retry") from exc
    return invoice


def get_invoice(ctx: ExecutionContext, invoice_id: int) -> Invoice:
    invoice = ctx.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFound(f"invoice {invoice_id} not found")
    return invoice


def list_invoices(
    ctx: ExecutionContext,
    page: int = 1,
    limit: int = 20,
    reference_type: str | None = None,
    invoice_no: str | None = None,
) -> tuple[list[Invoice], int]:
    """Invoices newest first; invoice_no filters by substring."""
    page = max(1, page)
    limit = min(max(1, limit), MAX_PAGE_SIZE)

    query = ctx.session.query(Invoice)
    if reference_type:
        if reference_type not in INVOICE_REFERENCE_TYPES:
            raise ValidationError(f"unknown invoice reference type {reference_type!r}")
        query = query.filter(Invoice.reference_type == reference_type)
    if invoice_no:
        query = query.filter(Invoice.invoice_no.contains(invoice_no))

    total = query.count()
    items = (
        query.order_by(Invoice.created_at.desc(), Invoice.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total
