# Overview: Flask API routes for tax rule lookup (read contract only).

from flask import Blueprint, g, request

from ..decorators import error_response, execution_context, require_auth, require_permission
from ..errors import LedgerError
from ..services import tax_service
from ..validation import parse_pagination


tax_bp = Blueprint("tax", __name__, url_prefix="/api/tax-rules")


@tax_bp.get("")
@require_auth
@require_permission("VIEW_TAX_RULES")
def list_tax_rules_route():
    try:
        page, limit = parse_pagination(request.args.get("page"), request.args.get("limit"))
        items, total = tax_service.list_tax_rules(
            execution_context(),
            tax_type=request.args.get("tax_type") or None,
            page=page,
            limit=limit,
        )
    except LedgerError as e:
        return error_response(e)
    return {"items": [r.to_dict() for r in items], "total": total, "page": page, "limit": limit}, 200


@tax_bp.get("/active")
@require_auth
@require_permission("VIEW_TAX_RULES")
def active_tax_rule_route():
    """Today's rule for ?tax_type=...; {"rule": null} when none is active."""
    tax_type = request.args.get("tax_type")
    if not tax_type:
        return {"error": "tax_type is required"}, 400
    try:
        rule = tax_service.get_active_tax_rate(execution_context(), tax_type)
    except LedgerError as e:
        return error_response(e)
    return {"rule": rule.to_dict() if rule else None}, 200


@tax_bp.get("/<int:rule_id>")
@require_auth
@require_permission("VIEW_TAX_RULES")
def get_tax_rule_route(rule_id: int):
    try:
        rule = tax_service.get_tax_rule(execution_context(), rule_id, user_id=g.current_user.id)
    except LedgerError as e:
        return error_response(e)
    return {"rule": rule.to_dict()}, 200
