from flask import Blueprint, jsonify, request

from motopdv.decorators import require_access, require_gestor_or_grant
from motopdv.services import reporting_service
from motopdv.services.pin_service import ACTION_REPORT_EXPORT
from motopdv.time_utils import parse_iso_date


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/dashboard")
@require_access
@require_gestor_or_grant(ACTION_REPORT_EXPORT)
def dashboard_report():
    try:
        today = parse_iso_date(request.args.get("date"))
    except ValueError:
        return jsonify({"error": "date must be YYYY-MM-DD"}), 400
    return jsonify(reporting_service.dashboard_summary(today)), 200


@reports_bp.get("/revenue")
@require_access
@require_gestor_or_grant(ACTION_REPORT_EXPORT)
def revenue_report():
    try:
        start, end = reporting_service.parse_range(request.args.get("start"), request.args.get("end"))
        return jsonify({
            "start": start.isoformat(),
            "end": end.isoformat(),
            "revenue_cents": reporting_service.revenue_between(start, end),
            "series": reporting_service.revenue_series(start, end),
        }), 200
    except reporting_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400


@reports_bp.get("/commissions")
@require_access
@require_gestor_or_grant(ACTION_REPORT_EXPORT)
def commissions_report():
    try:
        start, end = reporting_service.parse_range(request.args.get("start"), request.args.get("end"))
        return jsonify(reporting_service.commission_summary(start, end)), 200
    except reporting_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400


@reports_bp.get("/cash-closing")
@require_access
@require_gestor_or_grant(ACTION_REPORT_EXPORT)
def cash_closing_report():
    try:
        day = parse_iso_date(request.args.get("date"))
    except ValueError:
        return jsonify({"error": "date must be YYYY-MM-DD"}), 400
    return jsonify(reporting_service.cash_closing(day)), 200
