# Overview: Flask API routes for products, orders and stock movements.

"""
Inventory routes.

SECURITY: All routes require authentication.
- Reading products, orders and stock movements requires VIEW_PRODUCTS
- Registering products requires CREATE_PRODUCTS
- Submitting orders requires CREATE_ORDERS

Stock is never adjusted directly over HTTP: orders move stock only when
their approval request is approved.
"""

from flask import Blueprint, current_app, g, request

from ..decorators import call_with_retry, error_response, execution_context, require_auth, require_permission
from ..errors import LedgerError
from ..services import inventory_service
from ..validation import parse_int, parse_pagination


products_bp = Blueprint("products", __name__, url_prefix="/api/products")
orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@products_bp.get("")
@require_auth
@require_permission("VIEW_PRODUCTS")
def list_products_route():
    try:
        page, limit = parse_pagination(request.args.get("page"), request.args.get("limit"))
        items, total = inventory_service.list_products(
            execution_context(),
            page=page,
            limit=limit,
            search=request.args.get("search") or None,
        )
    except LedgerError as e:
        return error_response(e)

    return {"items": [p.to_dict() for p in items], "total": total, "page": page, "limit": limit}, 200


@products_bp.post("")
@require_auth
@require_permission("CREATE_PRODUCTS")
def create_product_route():
    """Register a product (zero stock) and open its CREATE_PRODUCT approval request."""
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return {"error": "Invalid JSON payload"}, 400

    try:
        product, approval = call_with_retry(lambda ctx: inventory_service.create_product(
            ctx,
            payload.get("sku"),
            payload.get("name"),
            payload.get("price"),
            g.current_user.id,
        ))
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return {"error": "Internal server error"}, 500

    return {"product": product.to_dict(), "approval": approval.to_dict()}, 201


@products_bp.get("/<int:product_id>")
@require_auth
@require_permission("VIEW_PRODUCTS")
def get_product_route(product_id: int):
    try:
        product = inventory_service.get_product(execution_context(), product_id)
    except LedgerError as e:
        return error_response(e)
    return {"product": product.to_dict()}, 200


@products_bp.get("/<int:product_id>/transactions")
@require_auth
@require_permission("VIEW_PRODUCTS")
def list_product_transactions_route(product_id: int):
    try:
        limit = parse_int(request.args.get("limit", 50), "limit")
        entries = inventory_service.list_inventory_transactions(execution_context(), product_id, limit=limit)
    except LedgerError as e:
        return error_response(e)
    return {"items": [entry.to_dict() for entry in entries]}, 200


@orders_bp.post("")
@require_auth
@require_permission("CREATE_ORDERS")
def create_order_route():
    """
    Submit an IMPORT/EXPORT order for approval.

    Body: {order_code, type, items: [{product_id, quantity}], note?,
           tax_rule_id? | tax_type?, side_fees?}
    """
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return {"error": "Invalid JSON payload"}, 400

    try:
        order, approval = call_with_retry(lambda ctx: inventory_service.create_order(
            ctx,
            payload.get("order_code"),
            payload.get("type"),
            payload.get("items"),
            user_id=g.current_user.id,
            note=payload.get("note"),
            tax_rule_id=payload.get("tax_rule_id"),
            tax_type=payload.get("tax_type"),
            side_fees=payload.get("side_fees"),
        ))
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return {"error": "Internal server error"}, 500

    return {"order": order.to_dict(), "approval": approval.to_dict()}, 201


@orders_bp.get("/<int:order_id>")
@require_auth
@require_permission("VIEW_PRODUCTS")
def get_order_route(order_id: int):
    try:
        order = inventory_service.get_order(execution_context(), order_id)
    except LedgerError as e:
        return error_response(e)
    return {"order": order.to_dict()}, 200
