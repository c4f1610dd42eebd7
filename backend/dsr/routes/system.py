# backend/dsr/routes/system.py
"""
System health endpoint.

Checks the database and reports the cutoff configuration so an operator
can tell at a glance which business timezone the engine is running in.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import WAREHOUSE, Product, DailyStockRecord, ReconciliationRun
from dsr.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        record_count = db.session.query(DailyStockRecord).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "daily_stock_records": record_count,
            }
        }
    except SQLAlchemyError:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def _last_cutoff_run():
    run = (
        db.session.query(ReconciliationRun)
        .filter(ReconciliationRun.trigger == "cutoff", ReconciliationRun.holder_key == WAREHOUSE)
        .order_by(ReconciliationRun.id.desc())
        .first()
    )
    return run.to_dict() if run else None


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database unhealthy
    """
    start_time = time.time()
    database_health = check_database_health()
    http_status = 503 if database_health["status"] == "unhealthy" else 200

    scheduler = current_app.extensions.get("dsr_scheduler")
    response = {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
        },
        "cutoff": {
            "timezone": current_app.config.get("DSR_TIMEZONE"),
            "time": current_app.config.get("DSR_CUTOFF_TIME"),
            "scheduler_running": bool(scheduler and scheduler.scheduler.running),
        },
    }

    if http_status == 200:
        response["cutoff"]["last_run"] = _last_cutoff_run()

    return response, http_status
