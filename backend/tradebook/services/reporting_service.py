# Overview: Service-layer read models for revenue and trade statistics.

"""
Reporting

Read-only views over what approvals have already committed:

- revenue_report(): approved invoices bucketed by week/month/quarter/year.
  Export invoices are revenue and tax collected; import and expense
  invoices are expense and tax paid. Side fees are summed across all three.
- trade_statistics(): COMPLETED orders in a window: import/export value
  and order counts, profit (export - import) and the top products per side.

Periods are labelled by their first day (YYYY-MM-DD, weeks start Monday)
and bucketed in Python so SQLite and PostgreSQL report identically.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal

from ..errors import ValidationError
from ..models import Invoice, Order, OrderItem, Product
from ..models.approvals import APPROVAL_STATUS_APPROVED
from ..models.finance import REF_TYPE_EXPENSE, REF_TYPE_ORDER_EXPORT, REF_TYPE_ORDER_IMPORT
from ..models.inventory import ORDER_STATUS_COMPLETED, ORDER_TYPE_EXPORT, ORDER_TYPE_IMPORT
from ..money import ZERO, money_str
from ..time_utils import parse_iso_datetime, to_utc_z, utcnow
from .unit_of_work import ExecutionContext

GROUP_BY_CHOICES = ("week", "month", "quarter", "year")
TOP_PRODUCTS_LIMIT = 5


def _parse_range(start: str | None, end: str | None) -> tuple[datetime | None, datetime | None]:
    try:
        start_dt = parse_iso_datetime(start) if start else None
        end_dt = parse_iso_datetime(end) if end else None
    except ValueError as e:
        raise ValidationError(f"start/end must be ISO-8601 datetimes: {e}")
    if start_dt and end_dt and start_dt > end_dt:
        raise ValidationError("start must not be after end")
    return start_dt, end_dt


def period_start(moment: datetime, group_by: str) -> date:
    day = moment.date()
    if group_by == "week":
        return day - timedelta(days=day.weekday())
    if group_by == "month":
        return day.replace(day=1)
    if group_by == "quarter":
        return date(day.year, 3 * ((day.month - 1) // 3) + 1, 1)
    if group_by == "year":
        return date(day.year, 1, 1)
    raise ValidationError(f"group_by must be one of: {', '.join(GROUP_BY_CHOICES)}")


def revenue_report(
    ctx: ExecutionContext,
    *,
    group_by: str = "month",
    start: str | None = None,
    end: str | None = None,
) -> dict:
    if group_by not in GROUP_BY_CHOICES:
        raise ValidationError(f"group_by must be one of: {', '.join(GROUP_BY_CHOICES)}")
    start_dt, end_dt = _parse_range(start, end)

    query = ctx.session.query(Invoice).filter(Invoice.approval_status == APPROVAL_STATUS_APPROVED)
    if start_dt:
        query = query.filter(Invoice.created_at >= start_dt)
    if end_dt:
        query = query.filter(Invoice.created_at <= end_dt)

    buckets: dict[date, dict[str, Decimal]] = {}
    for invoice in query.order_by(Invoice.created_at.asc(), Invoice.id.asc()):
        key = period_start(invoice.created_at, group_by)
        row = buckets.setdefault(key, {
            "total_revenue": ZERO,
            "total_expense": ZERO,
            "total_tax_collected": ZERO,
            "total_tax_paid": ZERO,
            "total_side_fees": ZERO,
        })
        total = Decimal(invoice.total_amount)
        tax = Decimal(invoice.tax_amount)
        if invoice.reference_type == REF_TYPE_ORDER_EXPORT:
            row["total_revenue"] += total
            row["total_tax_collected"] += tax
        elif invoice.reference_type in (REF_TYPE_ORDER_IMPORT, REF_TYPE_EXPENSE):
            row["total_expense"] += total
            row["total_tax_paid"] += tax
        row["total_side_fees"] += Decimal(invoice.side_fees)

    return {
        "group_by": group_by,
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "rows": [
            {"period": key.isoformat(), **{name: money_str(value) for name, value in row.items()}}
            for key, row in sorted(buckets.items())
        ],
    }


def _order_side(ctx: ExecutionContext, order_type: str, start_dt: datetime, end_dt: datetime) -> dict:
    rows = (
        ctx.session.query(OrderItem, Order.id, Product)
        .join(Order, Order.id == OrderItem.order_id)
        .join(Product, Product.id == OrderItem.product_id)
        .filter(
            Order.type == order_type,
            Order.status == ORDER_STATUS_COMPLETED,
            Order.created_at >= start_dt,
            Order.created_at <= end_dt,
        )
        .all()
    )

    value = ZERO
    order_ids = set()
    per_product: dict[int, dict] = {}
    for item, order_id, product in rows:
        line_value = Decimal(item.unit_price) * item.quantity
        value += line_value
        order_ids.add(order_id)
        entry = per_product.setdefault(product.id, {
            "product_id": product.id,
            "product_name": product.name,
            "product_sku": product.sku,
            "total_quantity": 0,
            "total_value": ZERO,
        })
        entry["total_quantity"] += item.quantity
        entry["total_value"] += line_value

    ranked = sorted(per_product.values(), key=lambda e: (-e["total_quantity"], e["product_id"]))
    top = [
        {**entry, "total_value": money_str(entry["total_value"])}
        for entry in ranked[:TOP_PRODUCTS_LIMIT]
    ]
    return {"value": value, "orders": len(order_ids), "top": top}


def trade_statistics(ctx: ExecutionContext, *, start: str | None = None, end: str | None = None) -> dict:
    """Import/export totals for COMPLETED orders; the window defaults to month-to-date."""
    start_dt, end_dt = _parse_range(start, end)
    if end_dt is None:
        end_dt = utcnow()
    if start_dt is None:
        start_dt = datetime(end_dt.year, end_dt.month, 1)

    imports = _order_side(ctx, ORDER_TYPE_IMPORT, start_dt, end_dt)
    exports = _order_side(ctx, ORDER_TYPE_EXPORT, start_dt, end_dt)

    return {
        "time_range_start_date": to_utc_z(start_dt),
        "time_range_end_date": to_utc_z(end_dt),
        "total_import_value": money_str(imports["value"]),
        "total_export_value": money_str(exports["value"]),
        "total_import_orders": imports["orders"],
        "total_export_orders": exports["orders"],
        "profit": money_str(exports["value"] - imports["value"]),
        "top_imported_items": imports["top"],
        "top_exported_items": exports["top"],
    }
