# Overview: Service-layer operations for expenses; multi-currency capture with FCT/VAT computation.

"""
Expense Capture

Base currency is USD. All figures are computed once here and never again:
approval turns them into an invoice as-is.

- converted_amount_usd = original_amount * exchange_rate
- Foreign vendor (FCT):
    NET:   fct = converted * rate
    GROSS: fct = converted * rate / (1 + rate)
    total_payable = original_amount + fct / exchange_rate
- VAT_INVOICE documents: vendor_tax_code required; VAT_INTL for foreign
  vendors, VAT_INLAND otherwise; vat = converted * rate; deductible.
"""

from __future__ import annotations

from decimal import Decimal

from ..errors import NotFound, ValidationError
from ..models import Expense, Order
from ..models.approvals import REQUEST_TYPE_CREATE_EXPENSE
from ..models.audit import ACTION_CREATE_EXPENSE
from ..models.finance import (
    DOC_TYPE_NONE,
    DOC_TYPE_VAT_INVOICE,
    DOCUMENT_TYPES,
    FCT_TYPE_NET,
    FCT_TYPES,
    TAX_TYPE_FCT,
    TAX_TYPE_VAT_INLAND,
    TAX_TYPE_VAT_INTL,
)
from ..money import ZERO, quantize_money
from ..time_utils import utc_today
from ..validation import MAX_PAGE_SIZE, parse_decimal, parse_int
from . import audit_service, tax_service
from .unit_of_work import ExecutionContext, run_in_tx


def _clean_str(payload: dict, key: str, max_len: int | None = None) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    value = value.strip()
    if max_len and len(value) > max_len:
        raise ValidationError(f"{key} exceeds max length {max_len}")
    return value or None


def _optional_id(payload: dict, key: str) -> int | None:
    value = payload.get(key)
    if value in (None, ""):
        return None
    parsed = parse_int(value, key)
    if parsed <= 0:
        raise ValidationError(f"{key} must be positive")
    return parsed


def compute_fct(converted: Decimal, rate: Decimal, fct_type: str) -> Decimal:
    if fct_type == FCT_TYPE_NET:
        return converted * rate
    return converted * rate / (Decimal(1) + rate)


def create_expense(ctx: ExecutionContext, payload: dict, user_id: int | None = None):
    """
    Record an expense and open its CREATE_EXPENSE approval request.

    Returns (expense, approval_request). Tax rates come from the rules
    active today; a missing rate raises NoActiveTaxRate.
    """
    from .approval_service import create_approval_request

    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    currency = (_clean_str(payload, "currency", 10) or "USD").upper()
    exchange_rate = parse_decimal(payload.get("exchange_rate", 1), "exchange_rate")
    if exchange_rate <= ZERO:
        raise ValidationError("exchange_rate must be > 0")
    if payload.get("original_amount") in (None, ""):
        raise ValidationError("original_amount is required")
    original_amount = parse_decimal(payload.get("original_amount"), "original_amount")
    if original_amount <= ZERO:
        raise ValidationError("original_amount must be > 0")

    is_foreign_vendor = payload.get("is_foreign_vendor", False)
    if not isinstance(is_foreign_vendor, bool):
        raise ValidationError("is_foreign_vendor must be a boolean")

    fct_type = _clean_str(payload, "fct_type")
    if is_foreign_vendor:
        fct_type = (fct_type or "").upper()
        if fct_type not in FCT_TYPES:
            raise ValidationError("fct_type must be NET or GROSS for foreign vendors")
    else:
        fct_type = None

    document_type = (_clean_str(payload, "document_type") or DOC_TYPE_NONE).upper()
    if document_type not in DOCUMENT_TYPES:
        raise ValidationError(f"document_type must be one of: {', '.join(sorted(DOCUMENT_TYPES))}")
    vendor_tax_code = _clean_str(payload, "vendor_tax_code", 50)
    if document_type == DOC_TYPE_VAT_INVOICE and not vendor_tax_code:
        raise ValidationError("vendor_tax_code is required for VAT_INVOICE documents")

    order_id = _optional_id(payload, "order_id")
    vendor_id = _optional_id(payload, "vendor_id")
    document_url = _clean_str(payload, "document_url")
    description = _clean_str(payload, "description")

    def _op(tx: ExecutionContext):
        session = tx.session
        today = utc_today()

        if order_id is not None and session.get(Order, order_id) is None:
            raise NotFound(f"order {order_id} not found")

        converted = original_amount * exchange_rate

        fct_rate = ZERO
        fct_amount = ZERO
        total_payable = original_amount
        if is_foreign_vendor:
            fct_rate = tax_service.calculate_active_tax(tx, TAX_TYPE_FCT, today)
            fct_amount = compute_fct(converted, fct_rate, fct_type)
            total_payable = original_amount + fct_amount / exchange_rate

        vat_rate = ZERO
        vat_amount = ZERO
        is_deductible = False
        if document_type == DOC_TYPE_VAT_INVOICE:
            vat_type = TAX_TYPE_VAT_INTL if is_foreign_vendor else TAX_TYPE_VAT_INLAND
            vat_rate = tax_service.calculate_active_tax(tx, vat_type, today)
            vat_amount = converted * vat_rate
            is_deductible = True

        expense = Expense(
            order_id=order_id,
            vendor_id=vendor_id,
            currency=currency,
            exchange_rate=exchange_rate,
            original_amount=quantize_money(original_amount),
            converted_amount_usd=quantize_money(converted),
            is_foreign_vendor=is_foreign_vendor,
            fct_type=fct_type,
            fct_rate=fct_rate,
            fct_amount=quantize_money(fct_amount),
            total_payable=quantize_money(total_payable),
            vat_rate=vat_rate,
            vat_amount=quantize_money(vat_amount),
            document_type=document_type,
            vendor_tax_code=vendor_tax_code,
            document_url=document_url,
            is_deductible_expense=is_deductible,
            description=description,
            created_by_user_id=user_id,
        )
        session.add(expense)
        session.flush()

        audit_service.log_action(
            tx,
            ACTION_CREATE_EXPENSE,
            expense.id,
            entity_name=description,
            details={
                "currency": currency,
                "original_amount": str(expense.original_amount),
                "converted_amount_usd": str(expense.converted_amount_usd),
                "fct_amount": str(expense.fct_amount),
                "vat_amount": str(expense.vat_amount),
            },
            user_id=user_id,
        )

        request = create_approval_request(
            tx,
            REQUEST_TYPE_CREATE_EXPENSE,
            expense.id,
            {
                "currency": currency,
                "original_amount": str(expense.original_amount),
                "converted_amount_usd": str(expense.converted_amount_usd),
                "document_type": document_type,
                "description": description,
            },
            user_id,
        )
        return expense, request

    return run_in_tx(ctx, _op)


def get_expense(ctx: ExecutionContext, expense_id: int) -> Expense:
    expense = ctx.session.get(Expense, expense_id)
    if expense is None:
        raise NotFound(f"expense {expense_id} not found")
    return expense


def list_expenses(ctx: ExecutionContext, page: int = 1, limit: int = 20) -> tuple[list[Expense], int]:
    page = max(1, page)
    limit = min(max(1, limit), MAX_PAGE_SIZE)

    query = ctx.session.query(Expense)
    total = query.count()
    items = (
        query.order_by(Expense.created_at.desc(), Expense.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total
