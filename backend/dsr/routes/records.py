from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from dsr.extensions import db
from dsr.services import ledger_store
from dsr.services.ledger_store import LedgerError
from dsr.services.stock_events import holder_key, product_key
from dsr.time_utils import parse_business_date


records_bp = Blueprint("records", __name__, url_prefix="/api/daily-stock-records")


def _date_arg(name: str):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return parse_business_date(raw)
    except ValueError:
        raise LedgerError(f"{name} must be YYYY-MM-DD")


@records_bp.get("")
def list_records():
    """
    Stored statements.

    ?date=YYYY-MM-DD for one day, or ?start_date=&end_date= for a range;
    ?product= narrows to one product (any spelling of its name);
    ?holder= narrows to one ledger (empty for the warehouse, omitted for all).
    """
    try:
        day = _date_arg("date")
        start = day or _date_arg("start_date")
        end = day or _date_arg("end_date")
        records = ledger_store.list_records(
            start=start, end=end, product=request.args.get("product"),
            holder=request.args.get("holder"),
        )
    except LedgerError as exc:
        return jsonify({"error": str(exc)}), 400

    return jsonify({
        "records": [rec.to_dict() for rec in records],
        "count": len(records),
    }), 200


@records_bp.delete("")
def delete_record():
    """Remove one (date, product) record of one ledger; neighbouring days are untouched."""
    product = request.args.get("product")
    holder = holder_key(request.args.get("holder"))
    try:
        day = _date_arg("date")
    except LedgerError as exc:
        return jsonify({"error": str(exc)}), 400
    if day is None or not product:
        return jsonify({"error": "date and product are required"}), 400

    try:
        ledger_store.delete_record(day, product, holder=holder)
        db.session.commit()
    except LedgerError as exc:
        db.session.rollback()
        return jsonify({"error": str(exc)}), 404
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to delete daily stock record")
        return jsonify({"error": "delete failed, please retry"}), 503

    return jsonify({
        "deleted": True,
        "date": day.isoformat(),
        "holder": holder,
        "product_key": product_key(product),
    }), 200


@records_bp.get("/previous")
def previous_record():
    """
    Latest stored record before ?date= for ?product= (and ?holder=).

    Used to pre-fill an opening when the day before has no statement.
    """
    product = request.args.get("product")
    try:
        day = _date_arg("date")
    except LedgerError as exc:
        return jsonify({"error": str(exc)}), 400
    if day is None or not product:
        return jsonify({"error": "date and product are required"}), 400

    try:
        rec = ledger_store.previous_record(day, product, holder=holder_key(request.args.get("holder")))
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to read previous daily stock record")
        return jsonify({"error": "lookup failed, please retry"}), 503

    return jsonify({"record": rec.to_dict() if rec else None}), 200
