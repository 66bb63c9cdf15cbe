# backend/quickshop/routes/system.py
"""
System health endpoint.

Used by the load balancer and for deployment debugging.
"""

import time
from flask import Blueprint, current_app

from ..extensions import db
from ..models import Product, Order, SessionToken

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Check database connectivity with a few cheap counts."""
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        order_count = db.session.query(Order).count()
        active_sessions = db.session.query(SessionToken).filter_by(is_revoked=False).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "orders": order_count,
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


def check_gateway_config() -> dict:
    gateway = current_app.extensions.get("payment_gateway")
    configured = bool(current_app.config.get("MIDTRANS_SERVER_KEY"))
    return {
        "status": "healthy" if gateway is not None and configured else "degraded",
        "details": {
            "production": bool(current_app.config.get("MIDTRANS_IS_PRODUCTION")),
            "server_key_configured": configured,
        },
    }


@system_bp.get("/health")
def health():
    database = check_database_health()
    gateway = check_gateway_config()
    overall = "healthy"
    if database["status"] != "healthy":
        overall = "unhealthy"
    elif gateway["status"] != "healthy":
        overall = "degraded"

    status_code = 503 if overall == "unhealthy" else 200
    return {
        "status": overall,
        "checks": {
            "database": database,
            "payment_gateway": gateway,
        },
    }, status_code
