# Overview: Service-layer operations for inventory; stock ledger plus order/product request creation.

"""
Inventory Ledger Invariants (authoritative)

- Product.current_stock is only written by adjust_stock().
- Every adjustment appends exactly one InventoryTransaction carrying the
  stock level right after the change (stock_after).
- current_stock never goes negative: exports are checked against the locked
  row, and anything else that would go negative is an InvariantViolation.
- adjust_stock() always runs inside the caller's unit of work and locks the
  product row first (SELECT ... FOR UPDATE). Lines touching the same product
  are applied one after the other in the same transaction.
- Orders and products do not touch stock when created; stock moves only when
  the CREATE_ORDER approval request is approved.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import or_

from ..errors import (
    DuplicateReference,
    InsufficientStock,
    InvariantViolation,
    NotFound,
    ValidationError,
)
from ..models import InventoryTransaction, Order, OrderItem, Product, TaxRule
from ..models.approvals import REQUEST_TYPE_CREATE_ORDER, REQUEST_TYPE_CREATE_PRODUCT
from ..models.audit import (
    ACTION_CREATE_ORDER_EXPORT,
    ACTION_CREATE_ORDER_IMPORT,
    ACTION_CREATE_PRODUCT,
)
from ..models.finance import TAX_TYPES
from ..models.inventory import (
    ORDER_STATUS_PENDING_APPROVAL,
    ORDER_TYPE_IMPORT,
    ORDER_TYPES,
    TX_TYPE_IN,
    TX_TYPE_OUT,
)
from ..money import PRICE_PLACES, money_str
from ..validation import (
    MAX_PAGE_SIZE,
    enforce_rules_order_items,
    enforce_rules_product,
    enforce_rules_side_fees,
    parse_int,
)
from . import audit_service
from .concurrency import lock_for_update
from .unit_of_work import ExecutionContext, run_in_tx

logger = logging.getLogger(__name__)


def adjust_stock(
    ctx: ExecutionContext,
    product_id: int,
    signed_delta: int,
    order_id: int | None = None,
) -> int:
    """
    Apply a signed stock change to one product and append a ledger entry.

    Returns the new on-hand quantity. Raises InsufficientStock when an
    outbound change exceeds current stock. The stock-changed notification is
    deferred until the unit of work commits.
    """
    uow = ctx.require_uow()
    if isinstance(signed_delta, bool) or not isinstance(signed_delta, int):
        raise ValidationError("stock delta must be an integer")
    if signed_delta == 0:
        raise ValidationError("stock delta must not be zero")

    product = (
        lock_for_update(uow.session.query(Product).filter(Product.id == product_id))
        .populate_existing()
        .first()
    )
    if product is None:
        raise NotFound(f"product {product_id} not found")

    current = product.current_stock
    if signed_delta < 0 and current < -signed_delta:
        raise InsufficientStock(product.id, product.name, have=current, want=-signed_delta)

    stock_after = current + signed_delta
    if stock_after < 0:
        raise InvariantViolation(
            f"stock for product {product.id} would become {stock_after} (current {current}, delta {signed_delta})"
        )

    product.current_stock = stock_after
    uow.session.add(InventoryTransaction(
        product_id=product.id,
        order_id=order_id,
        transaction_type=TX_TYPE_IN if signed_delta > 0 else TX_TYPE_OUT,
        quantity_changed=signed_delta,
        stock_after=stock_after,
    ))
    uow.session.flush()

    notifier = ctx.notifier
    if notifier is not None:
        uow.after_commit(lambda pid=product.id, qty=stock_after: notifier.publish(pid, qty))

    return stock_after


def create_product(
    ctx: ExecutionContext,
    sku: str,
    name: str,
    price=None,
    user_id: int | None = None,
):
    """
    Register a product with zero stock and open its CREATE_PRODUCT approval request.

    Returns (product, approval_request). Duplicate SKU -> DuplicateReference.
    """
    from .approval_service import create_approval_request

    sku, name, price = enforce_rules_product(sku, name, price)

    def _op(tx: ExecutionContext):
        session = tx.session
        if session.query(Product.id).filter(Product.sku == sku).first():
            raise DuplicateReference(f"product with sku {sku!r} already exists")

        product = Product(sku=sku, name=name, price=price, current_stock=0, is_active=True)
        session.add(product)
        session.flush()

        audit_service.log_action(
            tx,
            ACTION_CREATE_PRODUCT,
            product.id,
            entity_name=product.name,
            details={"sku": sku, "price": money_str(price, PRICE_PLACES)},
            user_id=user_id,
        )

        request = create_approval_request(
            tx,
            REQUEST_TYPE_CREATE_PRODUCT,
            product.id,
            {"sku": sku, "name": name, "price": money_str(price, PRICE_PLACES)},
            user_id,
        )
        return product, request

    return run_in_tx(ctx, _op)


def create_order(
    ctx: ExecutionContext,
    order_code: str,
    order_type: str,
    items,
    user_id: int | None = None,
    note: str | None = None,
    tax_rule_id=None,
    tax_type: str | None = None,
    side_fees=None,
):
    """
    Record an IMPORT/EXPORT order awaiting approval.

    Input is validated before any transaction opens. Each line keeps the
    unit_price it was sent with, or the product's catalog price when it has
    none; either way the price is snapshotted now and never recomputed. The approval
    snapshot carries the tax reference and side fees replayed at approval.

    Returns (order, approval_request).
    """
    from .approval_service import create_approval_request

    order_code = order_code.strip() if isinstance(order_code, str) else ""
    if not order_code:
        raise ValidationError("order_code is required")
    if len(order_code) > 100:
        raise ValidationError("order_code exceeds max length 100")
    if order_type not in ORDER_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(sorted(ORDER_TYPES))}")
    lines = enforce_rules_order_items(items)
    if tax_rule_id not in (None, ""):
        tax_rule_id = parse_int(tax_rule_id, "tax_rule_id")
    else:
        tax_rule_id = None
    if tax_type == "":
        tax_type = None
    if tax_type is not None and tax_type not in TAX_TYPES:
        raise ValidationError(f"tax_type must be one of: {', '.join(sorted(TAX_TYPES))}")
    fees = enforce_rules_side_fees(side_fees)

    def _op(tx: ExecutionContext):
        session = tx.session
        if session.query(Order.id).filter(Order.order_code == order_code).first():
            raise DuplicateReference(f"order code {order_code!r} already exists")

        if tax_rule_id is not None and session.get(TaxRule, tax_rule_id) is None:
            raise NotFound(f"tax rule {tax_rule_id} not found")

        order = Order(
            order_code=order_code,
            type=order_type,
            status=ORDER_STATUS_PENDING_APPROVAL,
            note=note,
            created_by_user_id=user_id,
        )
        session.add(order)

        snapshot_items = []
        for line in lines:
            product = session.get(Product, line.product_id)
            if product is None:
                raise NotFound(f"product {line.product_id} not found")
            unit_price = line.unit_price if line.unit_price is not None else Decimal(product.price or 0)
            order.items.append(OrderItem(
                product_id=product.id,
                quantity=line.quantity,
                unit_price=unit_price,
            ))
            snapshot_items.append({
                "product_id": product.id,
                "quantity": line.quantity,
                "unit_price": money_str(unit_price, PRICE_PLACES),
            })
        session.flush()

        action = ACTION_CREATE_ORDER_IMPORT if order_type == ORDER_TYPE_IMPORT else ACTION_CREATE_ORDER_EXPORT
        audit_service.log_action(
            tx,
            action,
            order.id,
            entity_name=order.order_code,
            details={"type": order_type, "items": snapshot_items},
            user_id=user_id,
        )

        snapshot = {
            "order_code": order_code,
            "type": order_type,
            "items": snapshot_items,
            "note": note,
            "side_fees": str(fees),
        }
        if tax_rule_id is not None:
            snapshot["tax_rule_id"] = tax_rule_id
        if tax_type is not None:
            snapshot["tax_type"] = tax_type

        request = create_approval_request(tx, REQUEST_TYPE_CREATE_ORDER, order.id, snapshot, user_id)
        return order, request

    return run_in_tx(ctx, _op)


def get_product(ctx: ExecutionContext, product_id: int) -> Product:
    product = ctx.session.get(Product, product_id)
    if product is None:
        raise NotFound(f"product {product_id} not found")
    return product


def get_order(ctx: ExecutionContext, order_id: int) -> Order:
    order = ctx.session.get(Order, order_id)
    if order is None:
        raise NotFound(f"order {order_id} not found")
    return order


def list_products(
    ctx: ExecutionContext,
    page: int = 1,
    limit: int = 20,
    search: str | None = None,
) -> tuple[list[Product], int]:
    page = max(1, page)
    limit = min(max(1, limit), MAX_PAGE_SIZE)

    query = ctx.session.query(Product)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Product.name.ilike(pattern), Product.sku.ilike(pattern)))

    total = query.count()
    items = (
        query.order_by(Product.created_at.desc(), Product.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total


def list_inventory_transactions(
    ctx: ExecutionContext,
    product_id: int,
    limit: int = 50,
) -> list[InventoryTransaction]:
    """Stock movements for one product, newest first."""
    get_product(ctx, product_id)
    limit = min(max(1, limit), MAX_PAGE_SIZE)
    return (
        ctx.session.query(InventoryTransaction)
        .filter(InventoryTransaction.product_id == product_id)
        .order_by(InventoryTransaction.created_at.desc(), InventoryTransaction.id.desc())
        .limit(limit)
        .all()
    )
