# Overview: Service-layer operations for order cancellation requests and admin review.

"""
Cancellation Service

WHY: Customers cannot cancel directly once money may have moved; they ask,
an admin decides.

RULES:
- A request is allowed while the order is pending, paid or processing.
- At most one pending request per order (service check + partial unique
  index for the race).
- Approve: request -> approved AND order -> cancelled, one transaction,
  regardless of payment_status.
- Reject: request -> rejected, admin notes required, order untouched.
- Review is terminal. Both review paths flip the request with a
  conditional UPDATE (WHERE status = 'pending'), so a second review of the
  same request is refused even if two admins click at once.
"""

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, OrderCancellation
from ..models.orders import (
    ORDER_PENDING,
    ORDER_PAID,
    ORDER_PROCESSING,
    ORDER_CANCELLED,
    CANCELLATION_PENDING,
    CANCELLATION_APPROVED,
    CANCELLATION_REJECTED,
)
from ..validation import ValidationError
from quickshop.time_utils import utcnow
from .concurrency import lock_for_update
from .order_service import OrderNotFoundError, InvalidStateError

CANCELLABLE_ORDER_STATUSES = (ORDER_PENDING, ORDER_PAID, ORDER_PROCESSING)


class DuplicateRequestError(ValueError):
    """Raised when the order already has a pending cancellation request."""


class CancellationNotFoundError(LookupError):
    """Raised when a cancellation request id does not exist."""


class NotPendingError(ValueError):
    """Raised when reviewing a request that was already reviewed."""


def request_cancellation(*, order_id: int, user, reason: str) -> OrderCancellation:
    """
    Create a pending cancellation request for the caller's order.

    Raises:
        ValidationError: blank reason
        OrderNotFoundError: unknown order, or not owned by caller (admins may file for anyone)
        InvalidStateError: order already shipped, delivered or cancelled
        DuplicateRequestError: a pending request already exists
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Order ID and reason are required")

    order = lock_for_update(db.session.query(Order).filter(Order.id == order_id)).first()
    if order is None or (order.user_id != user.id and not user.is_admin):
        raise OrderNotFoundError(f"Order {order_id} not found")

    if order.status not in CANCELLABLE_ORDER_STATUSES:
        raise InvalidStateError("This order cannot be cancelled")

    existing = db.session.query(OrderCancellation).filter_by(
        order_id=order_id,
        status=CANCELLATION_PENDING,
    ).first()
    if existing:
        raise DuplicateRequestError("Cancellation request already pending")

    cancellation = OrderCancellation(
        order_id=order.id,
        user_id=order.user_id,
        reason=reason,
        status=CANCELLATION_PENDING,
    )
    db.session.add(cancellation)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise DuplicateRequestError("Cancellation request already pending")

    return cancellation


def _mark_reviewed(cancellation_id: int, *, status: str, admin_id: int, admin_notes: str | None) -> OrderCancellation:
    cancellation = db.session.get(OrderCancellation, cancellation_id)
    if cancellation is None:
        raise CancellationNotFoundError(f"Cancellation request {cancellation_id} not found")

    result = db.session.execute(
        update(OrderCancellation)
        .where(
            OrderCancellation.id == cancellation_id,
            OrderCancellation.status == CANCELLATION_PENDING,
        )
        .values(
            status=status,
            admin_notes=admin_notes,
            reviewed_by=admin_id,
            reviewed_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise NotPendingError("Cancellation request is no longer pending")

    return cancellation


def approve_cancellation(cancellation_id: int, *, admin_id: int, admin_notes: str | None = None) -> OrderCancellation:
    """Approve a pending request and cancel its order in the same transaction."""
    notes = (admin_notes or "").strip() or None
    cancellation = _mark_reviewed(
        cancellation_id,
        status=CANCELLATION_APPROVED,
        admin_id=admin_id,
        admin_notes=notes,
    )

    db.session.execute(
        update(Order)
        .where(Order.id == cancellation.order_id)
        .values(status=ORDER_CANCELLED, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    db.session.refresh(cancellation)
    return cancellation


def reject_cancellation(cancellation_id: int, *, admin_id: int, admin_notes: str | None) -> OrderCancellation:
    """Reject a pending request. Admin notes are mandatory; the order is untouched."""
    notes = (admin_notes or "").strip()
    if not notes:
        raise ValidationError("Please provide a reason for rejection")

    cancellation = _mark_reviewed(
        cancellation_id,
        status=CANCELLATION_REJECTED,
        admin_id=admin_id,
        admin_notes=notes,
    )
    db.session.commit()
    db.session.refresh(cancellation)
    return cancellation


def list_cancellations(*, status: str | None = None) -> list[OrderCancellation]:
    """Admin queue, newest first."""
    query = db.session.query(OrderCancellation)
    if status:
        query = query.filter(OrderCancellation.status == status)
    return query.order_by(OrderCancellation.created_at.desc(), OrderCancellation.id.desc()).all()


def list_cancellations_for_order(order_id: int) -> list[OrderCancellation]:
    return db.session.query(OrderCancellation).filter_by(
        order_id=order_id
    ).order_by(OrderCancellation.created_at.asc(), OrderCancellation.id.asc()).all()
