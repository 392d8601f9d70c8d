# Overview: Flask API routes for the audit trail (compliance view).

from flask import Blueprint, request

from ..decorators import error_response, execution_context, require_auth, require_permission
from ..errors import LedgerError
from ..services import audit_service
from ..validation import parse_pagination


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit-logs")


@audit_bp.get("")
@require_auth
@require_permission("VIEW_AUDIT_LOG")
def list_audit_logs_route():
    try:
        page, limit = parse_pagination(request.args.get("page"), request.args.get("limit"))
        items, total = audit_service.list_audit_logs(
            execution_context(),
            page=page,
            limit=limit,
            action=request.args.get("action") or None,
        )
    except LedgerError as e:
        return error_response(e)
    return {"items": [a.to_dict() for a in items], "total": total, "page": page, "limit": limit}, 200
