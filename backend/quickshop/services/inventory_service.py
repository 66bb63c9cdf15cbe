# Overview: Service-layer operations for inventory; guarded stock adjustments.

# backend/quickshop/services/inventory_service.py
"""
Inventory Invariants (authoritative)

- Product.stock is the live available quantity and never goes negative.
- Stock only decreases when a payment notification moves an order into
  paid (see payment_service.handle_notification). Checkout does not reserve.
- Every decrement is a single conditional UPDATE:
      UPDATE products SET stock = stock - :q WHERE id = :id AND stock >= :q
  so two concurrent paid orders for the last unit cannot both succeed and
  no read-modify-write window exists.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Product, OrderItem

logger = logging.getLogger(__name__)


class InsufficientStockError(ValueError):
    """Raised when a requested quantity exceeds available stock."""

    def __init__(self, product_id: int, requested: int, available: int | None = None):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        if available is None:
            msg = f"Insufficient stock for product {product_id}"
        else:
            msg = f"Only {available} units available for product {product_id}"
        super().__init__(msg)


@dataclass
class DecrementReport:
    """Per-order outcome of a stock decrement pass."""
    decremented: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)


def decrement_stock(product_id: int, quantity: int) -> bool:
    """
    Atomically take `quantity` units off a product.

    Returns True if the row was updated, False if the product is missing or
    has fewer than `quantity` units. Does not commit.
    """
    if quantity <= 0:
        raise ValueError("quantity must be positive")

    result = db.session.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1


def decrement_for_order(order_id: int) -> DecrementReport:
    """
    Decrement stock for every line of an order, one savepoint per line.

    Best effort: a line that cannot be decremented (insufficient stock,
    deleted product, database error) is logged and skipped; the remaining
    lines are still processed. Does not commit the outer transaction.
    """
    report = DecrementReport()
    items = db.session.query(OrderItem).filter_by(order_id=order_id).order_by(OrderItem.id).all()

    for item in items:
        if item.product_id is None:
            logger.warning("Order %s line %s has no product; stock not adjusted", order_id, item.id)
            report.failed.append(item.id)
            continue

        try:
            with db.session.begin_nested():
                applied = decrement_stock(item.product_id, item.quantity)
        except SQLAlchemyError:
            logger.exception(
                "Stock decrement failed for order %s product %s", order_id, item.product_id
            )
            report.failed.append(item.id)
            continue

        if applied:
            report.decremented.append(item.id)
        else:
            logger.warning(
                "Insufficient stock for order %s product %s (qty %s)",
                order_id, item.product_id, item.quantity,
            )
            report.failed.append(item.id)

    return report


def check_available(product: Product, quantity: int) -> None:
    """Raise InsufficientStockError if `quantity` exceeds current stock."""
    if quantity > product.stock:
        raise InsufficientStockError(product.id, quantity, product.stock)
