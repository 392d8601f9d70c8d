# Overview: Flask API routes for the approval workflow; parses input and returns JSON responses.

"""
Approval routes.

SECURITY: All routes require authentication.
- Reading requires VIEW_APPROVALS
- Submitting a request requires CREATE_APPROVAL_REQUESTS
- Approving/rejecting requires APPROVE_REQUESTS

Approve/reject run with whole-operation retry: a deadlock or lost race is
retried, and the loser of a race sees 409 (already resolved).
"""

from flask import Blueprint, current_app, g, request

from ..decorators import call_with_retry, error_response, execution_context, require_auth, require_permission
from ..errors import LedgerError
from ..services import approval_service
from ..validation import parse_pagination


approvals_bp = Blueprint("approvals", __name__, url_prefix="/api/approvals")


@approvals_bp.get("")
@require_auth
@require_permission("VIEW_APPROVALS")
def list_approvals_route():
    try:
        page, limit = parse_pagination(request.args.get("page"), request.args.get("limit"))
        items, total = approval_service.list_approval_requests(
            execution_context(),
            status=request.args.get("status") or None,
            page=page,
            limit=limit,
            request_type=request.args.get("request_type") or None,
        )
    except LedgerError as e:
        return error_response(e)

    return {
        "items": [r.to_dict() for r in items],
        "total": total,
        "page": page,
        "limit": limit,
    }, 200


@approvals_bp.get("/<int:approval_id>")
@require_auth
@require_permission("VIEW_APPROVALS")
def get_approval_route(approval_id: int):
    try:
        approval = approval_service.get_approval_request(execution_context(), approval_id)
    except LedgerError as e:
        return error_response(e)
    return {"approval": approval.to_dict()}, 200


@approvals_bp.post("")
@require_auth
@require_permission("CREATE_APPROVAL_REQUESTS")
def create_approval_route():
    """Open an approval request for an existing order, product or expense."""
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return {"error": "Invalid JSON payload"}, 400

    try:
        approval = call_with_retry(lambda ctx: approval_service.create_approval_request(
            ctx,
            payload.get("request_type"),
            payload.get("reference_id"),
            payload.get("request_data") or {},
            g.current_user.id,
        ))
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create approval request")
        return {"error": "Internal server error"}, 500

    return {"approval": approval.to_dict()}, 201


@approvals_bp.post("/<int:approval_id>/approve")
@require_auth
@require_permission("APPROVE_REQUESTS")
def approve_route(approval_id: int):
    try:
        approval = call_with_retry(
            lambda ctx: approval_service.approve_request(ctx, approval_id, g.current_user.id)
        )
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to approve request %s", approval_id)
        return {"error": "Internal server error"}, 500

    return {"approval": approval.to_dict()}, 200


@approvals_bp.post("/<int:approval_id>/reject")
@require_auth
@require_permission("APPROVE_REQUESTS")
def reject_route(approval_id: int):
    payload = request.get_json(silent=True) or {}
    reason = payload.get("reason") if isinstance(payload, dict) else None

    try:
        approval = call_with_retry(
            lambda ctx: approval_service.reject_request(ctx, approval_id, g.current_user.id, reason)
        )
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reject request %s", approval_id)
        return {"error": "Internal server error"}, 500

    return {"approval": approval.to_dict()}, 200
