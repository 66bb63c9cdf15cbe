# Overview: Flask API routes for the persisted cart mirror.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import cart_service
from ..validation import ValidationError
from ..decorators import require_auth


cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


@cart_bp.get("")
@require_auth
def get_cart_route():
    """The caller's persisted cart, in cart-store item shape."""
    items = cart_service.fetch_cart(g.current_user.id)
    return jsonify({"items": items}), 200


@cart_bp.put("")
@require_auth
def replace_cart_route():
    """
    Replace the caller's persisted cart.

    Request body:
    {
        "items": [{"product_id": 3, "quantity": 2}, ...]
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        items = cart_service.replace_cart(g.current_user.id, data.get("items", []))
        return jsonify({"items": items}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to sync cart")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.delete("")
@require_auth
def clear_cart_route():
    removed = cart_service.clear_cart(g.current_user.id)
    return jsonify({"removed": removed}), 200
