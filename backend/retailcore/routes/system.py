"""
System health endpoint.

Reports database connectivity and the unread alert backlog so a load
balancer or operator can tell a live instance from a broken one.
"""

import time
from flask import Blueprint, current_app, jsonify

from ..extensions import db
from ..models import Product, StockAlert

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity with a couple of cheap counts.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        unread_alerts = db.session.query(StockAlert).filter(StockAlert.is_read.is_(False)).count()
        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "unread_alerts": unread_alerts,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    healthy = database["status"] == "healthy"
    return jsonify({
        "status": "ok" if healthy else "degraded",
        "checks": {"database": database},
    }), 200 if healthy else 503
