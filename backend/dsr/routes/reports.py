from flask import Blueprint, current_app, jsonify, request

from dsr.services import reconciliation_service
from dsr.services.reconciliation_service import PersistenceFailure, ReconciliationError


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/daily-stock")
def daily_stock_report():
    """
    Recompute the date on demand, persist it, and return the statement.

    ?holder= selects a holder ledger; omitted means the warehouse.
    """
    day = request.args.get("date")
    if not day:
        return jsonify({"error": "date is required"}), 400

    try:
        report = reconciliation_service.build_report(
            day, holder=request.args.get("holder", ""), trigger=reconciliation_service.TRIGGER_ON_DEMAND,
        )
        return jsonify(report), 200
    except ReconciliationError as exc:
        return jsonify({"error": str(exc)}), 400
    except PersistenceFailure:
        current_app.logger.exception("Failed to persist daily stock report")
        return jsonify({"error": "save failed, please retry"}), 503


@reports_bp.post("/daily-stock/save")
def save_daily_stock():
    """Manual save: same routine as the cutoff, answered synchronously."""
    data = request.get_json(silent=True) or {}
    day = data.get("date")
    if not day:
        return jsonify({"error": "date is required"}), 400

    try:
        result = reconciliation_service.reconcile_day(
            day, holder=data.get("holder") or "", trigger=reconciliation_service.TRIGGER_MANUAL,
        )
    except ReconciliationError as exc:
        return jsonify({"error": str(exc)}), 400
    except PersistenceFailure:
        current_app.logger.exception("Failed to save daily stock")
        return jsonify({"error": "save failed, please retry"}), 503

    report = reconciliation_service.report_payload(result)
    report["saved"] = True
    report["records_written"] = result.records_written
    return jsonify(report), 200
