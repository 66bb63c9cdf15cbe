# Overview: Flask API routes for the admin back office (orders, cancellations, stats).

# backend/quickshop/routes/admin.py
"""
Admin routes.

All endpoints require an authenticated user holding the admin role.
Catalog writes live in routes/products.py under the same /api/admin prefix.
"""
from flask import Blueprint, request, g, current_app

from ..extensions import db
from ..models import Order, OrderCancellation
from ..models.orders import (
    ORDER_PROCESSING,
    PAYMENT_UNPAID,
    PAYMENT_PENDING,
    CANCELLATION_PENDING,
)
from ..services import order_service, cancellation_service, catalog_service
from ..services.order_service import OrderNotFoundError, InvalidStateError
from ..services.cancellation_service import CancellationNotFoundError, NotPendingError
from ..validation import ValidationError
from ..decorators import require_auth, require_admin


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.get("/orders")
@require_auth
@require_admin
def list_orders():
    """
    All orders, newest first.

    Query params:
    - status: order status filter (optional)
    - payment_status: payment status filter (optional)
    - q: search order number or recipient name (optional)
    """
    try:
        orders = order_service.list_all_orders(
            status=request.args.get("status") or None,
            payment_status=request.args.get("payment_status") or None,
            search=request.args.get("q") or None,
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    return {"items": [o.to_dict(include_items=True) for o in orders], "count": len(orders)}


@admin_bp.post("/orders/<int:order_id>/status")
@require_auth
@require_admin
def update_order_status(order_id: int):
    """Body: {"status": "shipped"}"""
    data = request.get_json(silent=True) or {}
    try:
        order = order_service.advance_fulfillment(order_id, data.get("status"))
    except OrderNotFoundError:
        return {"error": "Order not found"}, 404
    except ValidationError as e:
        return {"error": str(e)}, 400
    except InvalidStateError as e:
        return {"error": str(e)}, 409
    current_app.logger.info("Admin %s moved order %s to %s", g.current_user.id, order.order_number, order.status)
    return order.to_dict()


@admin_bp.get("/cancellations")
@require_auth
@require_admin
def list_cancellations():
    items = cancellation_service.list_cancellations(status=request.args.get("status") or None)
    return {"items": [c.to_dict(include_order=True) for c in items], "count": len(items)}


@admin_bp.post("/cancellations/<int:cancellation_id>/approve")
@require_auth
@require_admin
def approve_cancellation(cancellation_id: int):
    data = request.get_json(silent=True) or {}
    try:
        cancellation = cancellation_service.approve_cancellation(
            cancellation_id,
            admin_id=g.current_user.id,
            admin_notes=data.get("admin_notes"),
        )
    except CancellationNotFoundError:
        return {"error": "Cancellation request not found"}, 404
    except NotPendingError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to approve cancellation")
        return {"error": "Internal server error"}, 500
    return {"success": True, "cancellation": cancellation.to_dict(include_order=True)}


@admin_bp.post("/cancellations/<int:cancellation_id>/reject")
@require_auth
@require_admin
def reject_cancellation(cancellation_id: int):
    data = request.get_json(silent=True) or {}
    try:
        cancellation = cancellation_service.reject_cancellation(
            cancellation_id,
            admin_id=g.current_user.id,
            admin_notes=data.get("admin_notes"),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except CancellationNotFoundError:
        return {"error": "Cancellation request not found"}, 404
    except NotPendingError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to reject cancellation")
        return {"error": "Internal server error"}, 500
    return {"success": True, "cancellation": cancellation.to_dict(include_order=True)}


@admin_bp.get("/stats")
@require_auth
@require_admin
def stats():
    """Dashboard counters."""
    catalog = catalog_service.get_catalog_stats(current_app.config["LOW_STOCK_THRESHOLD"])
    orders = {
        "total": db.session.query(Order).count(),
        "awaiting_payment": db.session.query(Order).filter(
            Order.payment_status.in_((PAYMENT_UNPAID, PAYMENT_PENDING))
        ).count(),
        "processing": db.session.query(Order).filter(Order.status == ORDER_PROCESSING).count(),
        "pending_cancellations": db.session.query(OrderCancellation).filter(
            OrderCancellation.status == CANCELLATION_PENDING
        ).count(),
    }
    return {"catalog": catalog, "orders": orders}
