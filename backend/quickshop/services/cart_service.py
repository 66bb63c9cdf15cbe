# Overview: Service-layer operations for the persisted cart mirror.

"""
Server-side cart

The shopper's cart lives in the client (see quickshop.cart_store).
For signed-in users the client mirrors it here after every mutation and
reads it back on login to merge with a guest cart. Writes replace the
whole cart in one transaction so a mirror is never half-applied.
"""

from __future__ import annotations

from ..extensions import db
from ..models import CartItemRecord, Product
from ..validation import ValidationError, parse_quantity
from quickshop.time_utils import utcnow


def fetch_cart(user_id: int) -> list[dict]:
    """Return the user's persisted cart in cart-store item shape, oldest line first."""
    rows = (
        db.session.query(CartItemRecord)
        .join(Product, CartItemRecord.product_id == Product.id)
        .filter(CartItemRecord.user_id == user_id)
        .order_by(CartItemRecord.created_at.asc(), CartItemRecord.id.asc())
        .all()
    )
    return [row.to_cart_item() for row in rows]


def _normalize_lines(items) -> list[tuple[int, int]]:
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    lines: dict[int, int] = {}
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("each item must be an object")
        product_id = raw.get("product_id", raw.get("id"))
        if isinstance(product_id, bool) or not isinstance(product_id, int):
            raise ValidationError("product_id must be an integer")
        quantity = parse_quantity(raw.get("quantity"))
        if product_id in lines:
            raise ValidationError(f"duplicate product_id {product_id}")
        lines[product_id] = quantity
    return list(lines.items())


def replace_cart(user_id: int, items) -> list[dict]:
    """
    Overwrite the user's persisted cart with `items`.

    items: [{"product_id": int, "quantity": int >= 1}, ...]
    Unknown products are rejected; the previous cart is left untouched on
    any validation failure.
    """
    lines = _normalize_lines(items)

    if lines:
        product_ids = [pid for pid, _ in lines]
        found = {
            pid for (pid,) in db.session.query(Product.id).filter(Product.id.in_(product_ids)).all()
        }
        missing = [pid for pid in product_ids if pid not in found]
        if missing:
            raise ValidationError(f"Unknown product_id: {missing[0]}")

    now = utcnow()
    db.session.query(CartItemRecord).filter_by(user_id=user_id).delete(synchronize_session=False)
    for product_id, quantity in lines:
        db.session.add(CartItemRecord(
            user_id=user_id,
            product_id=product_id,
            quantity=quantity,
            created_at=now,
            updated_at=now,
        ))
    db.session.commit()

    return fetch_cart(user_id)


def clear_cart(user_id: int) -> int:
    """Delete every persisted line for the user. Returns rows removed."""
    deleted = db.session.query(CartItemRecord).filter_by(user_id=user_id).delete(synchronize_session=False)
    db.session.commit()
    return deleted
