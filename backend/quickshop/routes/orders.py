# Overview: Flask API routes for checkout, order history and cancellation requests.

# backend/quickshop/routes/orders.py
"""
Order API Routes

DESIGN:
- POST /api/orders creates the order (one transaction) and then asks the
  gateway for a Snap token. A gateway failure answers 502 but still
  returns the created order so the client can retry payment with
  POST /api/orders/<id>/pay instead of checking out again.
- Customers only ever see their own orders; admins see all.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import order_service, cancellation_service, payment_service
from ..services.order_service import OrderNotFoundError, InvalidStateError
from ..services.cancellation_service import DuplicateRequestError
from ..services.inventory_service import InsufficientStockError
from ..services.payment_gateway import GatewayError
from ..validation import ValidationError, ConflictError
from ..decorators import require_auth


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _gateway():
    return current_app.extensions["payment_gateway"]


def _finish_url(order) -> str:
    return f"{current_app.config['APP_URL'].rstrip('/')}/orders/{order.id}"


@orders_bp.post("")
@require_auth
def checkout_route():
    """
    Check out the client cart.

    Request body:
    {
        "items": [{"product_id": 3, "quantity": 2}, ...],
        "shipping": {
            "full_name": "...", "email": "...", "phone": "081234567890",
            "address": "...", "city": "...", "province": "...",
            "postal_code": "...", "notes": "..."  (optional)
        }
    }

    Returns:
        201: {order, token, redirect_url}
        400: validation error (empty cart, bad shipping form)
        409: product unavailable or insufficient stock
        502: order created but payment token request failed
    """
    data = request.get_json(silent=True) or {}

    try:
        order = order_service.create_order(
            user_id=g.current_user.id,
            items=data.get("items"),
            shipping=data.get("shipping"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except (ConflictError, InsufficientStockError) as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500

    try:
        snap = order_service.request_payment(order, gateway=_gateway(), finish_url=_finish_url(order))
    except GatewayError as e:
        current_app.logger.warning("Payment token request failed for order %s: %s", order.order_number, e)
        return jsonify({
            "error": str(e),
            "order": order.to_dict(include_items=True),
        }), 502

    return jsonify({
        "order": order.to_dict(include_items=True),
        "token": snap.token,
        "redirect_url": snap.redirect_url,
    }), 201


@orders_bp.post("/<int:order_id>/pay")
@require_auth
def retry_payment_route(order_id: int):
    """Request a fresh Snap token for an existing pending order."""
    try:
        order = order_service.get_order_for_user(order_id, g.current_user)
        snap = order_service.request_payment(order, gateway=_gateway(), finish_url=_finish_url(order))
    except OrderNotFoundError:
        return jsonify({"error": "Order not found"}), 404
    except InvalidStateError as e:
        return jsonify({"error": str(e)}), 409
    except GatewayError as e:
        current_app.logger.warning("Payment token retry failed for order %s: %s", order_id, e)
        return jsonify({"error": str(e)}), 502

    return jsonify({
        "order": order.to_dict(),
        "token": snap.token,
        "redirect_url": snap.redirect_url,
    }), 200


@orders_bp.get("")
@require_auth
def list_orders_route():
    """
    The caller's orders, newest first.

    Query params:
    - status: filter by order status (optional)
    - q: search order number or recipient name (optional)
    """
    try:
        orders = order_service.list_orders_for_user(
            g.current_user.id,
            status=request.args.get("status") or None,
            search=request.args.get("q") or None,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({
        "items": [o.to_dict(include_items=True) for o in orders],
        "count": len(orders),
    }), 200


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = order_service.get_order_for_user(order_id, g.current_user)
    except OrderNotFoundError:
        return jsonify({"error": "Order not found"}), 404

    data = order.to_dict(include_items=True)
    data["cancellations"] = [
        c.to_dict() for c in cancellation_service.list_cancellations_for_order(order.id)
    ]
    if g.current_user.is_admin:
        data["payment_logs"] = [log.to_dict() for log in payment_service.get_payment_logs(order.id)]
    return jsonify(data), 200


@orders_bp.post("/cancel")
@require_auth
def cancel_order_route():
    """
    Ask for an order to be cancelled (admin approval required).

    Request body: {"orderId": 12, "reason": "Ordered the wrong shade"}

    Returns:
        201: pending cancellation request
        400: missing fields
        404: order not found (code: not_found)
        409: order past cancellable state (code: invalid_state) or a
             request already pending (code: duplicate_pending_request)
    """
    data = request.get_json(silent=True) or {}
    order_id = data.get("orderId", data.get("order_id"))
    reason = data.get("reason")

    if not order_id or not reason or isinstance(order_id, bool) or not isinstance(order_id, int):
        return jsonify({"error": "Order ID and reason are required", "code": "invalid_request"}), 400

    try:
        cancellation = cancellation_service.request_cancellation(
            order_id=order_id,
            user=g.current_user,
            reason=reason,
        )
    except ValidationError as e:
        return jsonify({"error": str(e), "code": "invalid_request"}), 400
    except OrderNotFoundError:
        return jsonify({"error": "Order not found", "code": "not_found"}), 404
    except InvalidStateError as e:
        return jsonify({"error": str(e), "code": "invalid_state"}), 409
    except DuplicateRequestError as e:
        return jsonify({"error": str(e), "code": "duplicate_pending_request"}), 409
    except Exception:
        current_app.logger.exception("Failed to request cancellation")
        return jsonify({"error": "Failed to process cancellation"}), 500

    return jsonify({
        "success": True,
        "message": "Cancellation request submitted. Waiting for admin approval.",
        "cancellation": cancellation.to_dict(),
    }), 201
