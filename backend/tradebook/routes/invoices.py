# Overview: Flask API routes for invoices (read-only; invoices are created by approvals).

from flask import Blueprint, request

from ..decorators import error_response, execution_context, require_auth, require_permission
from ..errors import LedgerError
from ..services import invoice_service
from ..validation import parse_pagination


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.get("")
@require_auth
@require_permission("VIEW_INVOICES")
def list_invoices_route():
    try:
        page, limit = parse_pagination(request.args.get("page"), request.args.get("limit"))
        items, total = invoice_service.list_invoices(
            execution_context(),
            page=page,
            limit=limit,
            reference_type=request.args.get("reference_type") or None,
            invoice_no=request.args.get("invoice_no") or None,
        )
    except LedgerError as e:
        return error_response(e)
    return {"items": [i.to_dict() for i in items], "total": total, "page": page, "limit": limit}, 200


@invoices_bp.get("/<int:invoice_id>")
@require_auth
@require_permission("VIEW_INVOICES")
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(execution_context(), invoice_id)
    except LedgerError as e:
        return error_response(e)
    return {"invoice": invoice.to_dict()}, 200
