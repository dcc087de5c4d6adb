# backend/motopdv/routes/system.py
"""
System health endpoint.

Checks the database and whether the workshop has been set up.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import AccessSession, Product, WorkOrder
from ..services import settings_service
from motopdv.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        order_count = db.session.query(WorkOrder).count()
        active_sessions = db.session.query(AccessSession).filter_by(is_revoked=False).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "work_orders": order_count,
                "active_sessions": active_sessions,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_setup_health() -> dict:
    """Degraded until the workshop setup (identity + manager PIN) is done."""
    try:
        if settings_service.is_configured():
            return {"status": "healthy", "details": {"configured": True}}
        return {
            "status": "degraded",
            "warning": "Workshop setup not completed",
            "details": {"configured": False},
        }
    except Exception:
        current_app.logger.exception("Setup health check failed")
        return {"status": "unhealthy", "error": "Settings error"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (setup pending)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    setup_health = check_setup_health()

    all_checks = [database_health, setup_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "setup": setup_health,
        }
    }

    return response, http_status
