# backend/unitpos/routes/system.py
"""
System health endpoint.

Reports database connectivity and whether the reservation expiry column is
available on this deployment.
"""

import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from ..extensions import db
from ..services.capabilities import get_expiry_support

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def check_database_health() -> dict:
    """
    Check database connectivity with a trivial query.

    Returns dict with status and latency.
    """
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    database = check_database_health()
    expiry = None
    if database["status"] == "healthy":
        expiry = get_expiry_support().is_supported()

    status_code = 200 if database["status"] == "healthy" else 503
    return jsonify({
        "status": database["status"],
        "database": database,
        "reservation_expiry_supported": expiry,
    }), status_code
