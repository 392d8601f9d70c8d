# Overview: Flask API routes for expenses.

from flask import Blueprint, current_app, g, request

from ..decorators import call_with_retry, error_response, execution_context, require_auth, require_permission
from ..errors import LedgerError
from ..services import expense_service
from ..validation import parse_pagination


expenses_bp = Blueprint("expenses", __name__, url_prefix="/api/expenses")


@expenses_bp.get("")
@require_auth
@require_permission("VIEW_EXPENSES")
def list_expenses_route():
    try:
        page, limit = parse_pagination(request.args.get("page"), request.args.get("limit"))
        items, total = expense_service.list_expenses(execution_context(), page=page, limit=limit)
    except LedgerError as e:
        return error_response(e)
    return {"items": [x.to_dict() for x in items], "total": total, "page": page, "limit": limit}, 200


@expenses_bp.post("")
@require_auth
@require_permission("CREATE_EXPENSES")
def create_expense_route():
    """Record an expense (taxes computed now) and open its CREATE_EXPENSE approval request."""
    payload = request.get_json(silent=True) or {}

    try:
        expense, approval = call_with_retry(
            lambda ctx: expense_service.create_expense(ctx, payload, g.current_user.id)
        )
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create expense")
        return {"error": "Internal server error"}, 500

    return {"expense": expense.to_dict(), "approval": approval.to_dict()}, 201


@expenses_bp.get("/<int:expense_id>")
@require_auth
@require_permission("VIEW_EXPENSES")
def get_expense_route(expense_id: int):
    try:
        expense = expense_service.get_expense(execution_context(), expense_id)
    except LedgerError as e:
        return error_response(e)
    return {"expense": expense.to_dict()}, 200
