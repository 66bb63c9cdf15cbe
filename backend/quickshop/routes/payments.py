# Overview: Flask API route for gateway payment notifications.

# backend/quickshop/routes/payments.py
"""
Payment notification webhook and Snap client settings

Called by Midtrans, not by the shopper's browser. The body is the raw
notification JSON. Any unexpected failure answers 500 so the gateway
redelivers; duplicate deliveries are safe (see payment_service).
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import payment_service
from ..services.payment_gateway import PRODUCTION_BASE_URL, SANDBOX_BASE_URL, SNAP_JS_PATH
from ..services.payment_service import InvalidSignatureError, UnknownOrderError


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payment")


@payments_bp.post("/webhook")
def webhook_route():
    try:
        notification = request.get_json(silent=True)
        if not isinstance(notification, dict):
            return jsonify({"error": "Invalid payload"}), 400

        current_app.logger.info(
            "Midtrans notification received: order=%s status=%s",
            notification.get("order_id"),
            notification.get("transaction_status"),
        )

        payment_service.handle_notification(
            notification,
            server_key=current_app.config["MIDTRANS_SERVER_KEY"],
        )
        return jsonify({"message": "OK"}), 200

    except InvalidSignatureError:
        return jsonify({"error": "Invalid signature"}), 403
    except UnknownOrderError:
        return jsonify({"error": "Order not found"}), 404
    except Exception:
        current_app.logger.exception("Webhook processing failed")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/config")
def client_config_route():
    """Public settings the storefront needs to load the Snap popup."""
    production = bool(current_app.config.get("MIDTRANS_IS_PRODUCTION", False))
    base_url = PRODUCTION_BASE_URL if production else SANDBOX_BASE_URL
    return jsonify({
        "client_key": current_app.config.get("MIDTRANS_CLIENT_KEY", ""),
        "is_production": production,
        "snap_js_url": f"{base_url}{SNAP_JS_PATH}",
    }), 200
