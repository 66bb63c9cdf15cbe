# Overview: Service-layer operations for orders; checkout, payment token, fulfilment.

"""
Order Service

WHY: Checkout turns the shopper's cart into an Order the gateway can be
paid against. Everything after that (payment, cancellation, fulfilment)
moves lifecycle columns on the same row.

DESIGN PRINCIPLES:
- Prices come from the catalog at checkout, never from the client.
- Order and OrderItems are written in ONE transaction; a failed line
  insert leaves no orphan order behind.
- The Snap token is requested after the order commits. If the gateway
  fails, the order stays pending/unpaid and the shopper retries payment
  against it (request_payment) instead of creating a duplicate.
- Stock is NOT reserved here; it is decremented when the gateway reports
  the order paid (payment_service).
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from typing import Any, Mapping

from flask import current_app
from sqlalchemy import or_, update

from ..extensions import db
from ..models import Order, OrderItem, Product
from ..models.orders import (
    ORDER_PENDING,
    ORDER_PROCESSING,
    ORDER_SHIPPED,
    ORDER_DELIVERED,
    ORDER_STATUSES,
    PAYMENT_UNPAID,
    PAYMENT_PENDING,
)
from ..validation import ValidationError, ConflictError, validate_shipping, parse_quantity
from quickshop.time_utils import epoch_ms
from .inventory_service import check_available
from .payment_gateway import SnapToken


class OrderNotFoundError(LookupError):
    """Raised when an order does not exist or is not visible to the caller."""


class InvalidStateError(ValueError):
    """Raised when an order is not in a state that allows the operation."""


SHIPPING_LINE_ID = "SHIPPING"
_ORDER_SUFFIX_ALPHABET = string.digits + string.ascii_uppercase

# Forward-only fulfilment chain driven by admins
FULFILMENT_TRANSITIONS = {
    ORDER_SHIPPED: ORDER_PROCESSING,
    ORDER_DELIVERED: ORDER_SHIPPED,
}


@dataclass(frozen=True)
class PricingRule:
    """Flat shipping fee, waived once the subtotal reaches the threshold."""
    shipping_fee: int = 25000
    free_shipping_threshold: int = 500000

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "PricingRule":
        return cls(
            shipping_fee=int(config.get("SHIPPING_FEE", cls.shipping_fee)),
            free_shipping_threshold=int(config.get("FREE_SHIPPING_THRESHOLD", cls.free_shipping_threshold)),
        )

    def shipping_for(self, subtotal: int) -> int:
        return 0 if subtotal >= self.free_shipping_threshold else self.shipping_fee

    def totals(self, subtotal: int) -> dict:
        shipping_fee = self.shipping_for(subtotal)
        return {
            "subtotal": subtotal,
            "shipping_fee": shipping_fee,
            "total": subtotal + shipping_fee,
        }


def generate_order_number(now_ms: int | None = None) -> str:
    """ORD-<epoch millis>-<9 random base36 chars>"""
    if now_ms is None:
        now_ms = epoch_ms()
    suffix = "".join(secrets.choice(_ORDER_SUFFIX_ALPHABET) for _ in range(9))
    return f"ORD-{now_ms}-{suffix}"


def _normalize_items(items) -> list[tuple[int, int]]:
    if not isinstance(items, list) or not items:
        raise ValidationError("Your cart is empty")

    lines: dict[int, int] = {}
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("each item must be an object")
        product_id = raw.get("product_id", raw.get("id"))
        if isinstance(product_id, bool) or not isinstance(product_id, int):
            raise ValidationError("product_id must be an integer")
        quantity = parse_quantity(raw.get("quantity"))
        lines[product_id] = lines.get(product_id, 0) + quantity
    return list(lines.items())


def create_order(
    *,
    user_id: int,
    items,
    shipping: Mapping[str, Any] | None,
    pricing: PricingRule | None = None,
) -> Order:
    """
    Persist an order and its line snapshots.

    Args:
        user_id: authenticated shopper
        items: [{"product_id": int, "quantity": int}, ...] from the client cart
        shipping: checkout form (full_name, email, phone, address, city,
            province, postal_code, notes?)
        pricing: shipping rule; defaults to app config

    Raises:
        ValidationError: empty cart, bad shipping form, malformed lines
        ConflictError: product missing or inactive
        InsufficientStockError: a line asks for more than current stock
    """
    shipping = validate_shipping(shipping)
    lines = _normalize_items(items)
    if pricing is None:
        pricing = PricingRule.from_config(current_app.config)

    product_ids = [pid for pid, _ in lines]
    products = {
        p.id: p
        for p in db.session.query(Product).filter(Product.id.in_(product_ids)).all()
    }

    snapshots = []
    subtotal = 0
    for product_id, quantity in lines:
        product = products.get(product_id)
        if product is None or not product.is_active:
            raise ConflictError(f"Product {product_id} is no longer available")
        check_available(product, quantity)

        line_total = product.price * quantity
        subtotal += line_total
        snapshots.append(OrderItem(
            product_id=product.id,
            product_name=product.name,
            product_image=product.image_url,
            product_sku=product.sku or str(product.id),
            price=product.price,
            quantity=quantity,
            subtotal=line_total,
        ))

    totals = pricing.totals(subtotal)

    order = Order(
        user_id=user_id,
        order_number=generate_order_number(),
        subtotal=totals["subtotal"],
        tax=0,
        shipping_fee=totals["shipping_fee"],
        total=totals["total"],
        status=ORDER_PENDING,
        payment_status=PAYMENT_UNPAID,
        shipping_name=shipping["full_name"],
        shipping_email=shipping["email"],
        shipping_phone=shipping["phone"],
        shipping_address=shipping["address"],
        shipping_city=shipping["city"],
        shipping_province=shipping["province"],
        shipping_postal_code=shipping["postal_code"],
        notes=shipping["notes"],
    )
    order.items = snapshots

    try:
        db.session.add(order)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return order


def build_gateway_items(order: Order) -> list[dict]:
    """Order lines plus the synthetic shipping line, in gateway item shape."""
    items = [
        {
            "id": item.product_sku or str(item.product_id),
            "name": item.product_name,
            "price": item.price,
            "quantity": item.quantity,
        }
        for item in order.items
    ]
    items.append({
        "id": SHIPPING_LINE_ID,
        "name": "Shipping Fee",
        "price": order.shipping_fee,
        "quantity": 1,
    })
    return items


def request_payment(order: Order, *, gateway, finish_url: str | None = None) -> SnapToken:
    """
    Ask the gateway for a Snap token for an existing order.

    Only pending orders that have not been paid (or failed/expired) can be
    paid. GatewayError propagates to the caller; the order is left as-is.
    """
    if order.status != ORDER_PENDING or order.payment_status not in (PAYMENT_UNPAID, PAYMENT_PENDING):
        raise InvalidStateError("This order can no longer be paid")

    snap = gateway.create_transaction(
        order_number=order.order_number,
        gross_amount=order.total,
        customer={
            "name": order.shipping_name,
            "email": order.shipping_email,
            "phone": order.shipping_phone,
        },
        items=build_gateway_items(order),
        finish_url=finish_url,
    )

    order.payment_token = snap.token
    order.payment_redirect_url = snap.redirect_url
    db.session.commit()
    return snap


def get_order_for_user(order_id: int, user) -> Order:
    """Owner or admin only; anyone else gets not-found rather than forbidden."""
    order = db.session.get(Order, order_id)
    if order is None or (order.user_id != user.id and not user.is_admin):
        raise OrderNotFoundError(f"Order {order_id} not found")
    return order


def _filtered(query, status: str | None, search: str | None):
    if status:
        if status not in ORDER_STATUSES:
            raise ValidationError(f"Invalid status: {status}")
        query = query.filter(Order.status == status)
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.filter(or_(
            db.func.lower(Order.order_number).like(pattern),
            db.func.lower(Order.shipping_name).like(pattern),
        ))
    return query


def list_orders_for_user(user_id: int, *, status: str | None = None, search: str | None = None) -> list[Order]:
    query = db.session.query(Order).filter(Order.user_id == user_id)
    query = _filtered(query, status, search)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()


def list_all_orders(*, status: str | None = None, search: str | None = None,
                    payment_status: str | None = None) -> list[Order]:
    """Admin view across all customers."""
    query = _filtered(db.session.query(Order), status, search)
    if payment_status:
        query = query.filter(Order.payment_status == payment_status)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()


def advance_fulfillment(order_id: int, new_status: str) -> Order:
    """
    Move a paid order along processing -> shipped -> delivered.

    The UPDATE is conditional on the expected prior status, so two admins
    clicking at once cannot skip a step or resurrect a cancelled order.
    """
    required = FULFILMENT_TRANSITIONS.get(new_status)
    if required is None:
        raise ValidationError(f"Cannot set status to {new_status}")

    order = db.session.get(Order, order_id)
    if order is None:
        raise OrderNotFoundError(f"Order {order_id} not found")

    result = db.session.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == required)
        .values(status=new_status)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise InvalidStateError(f"Order must be {required} to become {new_status}")

    db.session.commit()
    db.session.refresh(order)
    return order
