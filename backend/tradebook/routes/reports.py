# Overview: Flask API routes for revenue and trade statistics reports.

from flask import Blueprint, request

from ..decorators import error_response, execution_context, require_auth, require_permission
from ..errors import LedgerError
from ..services import reporting_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/revenue")
@require_auth
@require_permission("VIEW_REPORTS")
def revenue_report_route():
    try:
        report = reporting_service.revenue_report(
            execution_context(),
            group_by=request.args.get("group_by", "month"),
            start=request.args.get("start"),
            end=request.args.get("end"),
        )
    except LedgerError as e:
        return error_response(e)
    return report, 200


@reports_bp.get("/statistics")
@require_auth
@require_permission("VIEW_REPORTS")
def trade_statistics_route():
    try:
        report = reporting_service.trade_statistics(
            execution_context(),
            start=request.args.get("start"),
            end=request.args.get("end"),
        )
    except LedgerError as e:
        return error_response(e)
    return report, 200
