# Overview: Service-layer operations for payment notifications; the webhook state machine.

"""
Payment Notification Service

WHY: The gateway's asynchronous notification is the single authoritative
trigger for marking an order paid and taking its stock. The shopper's
browser callback is never trusted for either.

DESIGN PRINCIPLES:
- Authenticity first: signature mismatch changes nothing.
- At-least-once delivery is assumed. The order row is moved with a
  conditional UPDATE (only while payment_status is not terminal), and its
  row count tells us whether THIS delivery performed the transition. Stock
  is decremented only by the delivery that moved the order into paid.
- Stock decrement is best effort; a failure is logged and the
  notification still completes.
- Every verified notification is appended to payment_logs, including
  duplicates and ones that change nothing.

STATUS MAPPING (transaction_status, fraud_status) -> (payment_status, status):
- capture + accept     -> paid, processing
- capture + other      -> pending, pending
- settlement           -> paid, processing
- pending              -> pending, pending
- deny / cancel        -> failed, cancelled
- expire               -> expired, cancelled
- anything else        -> pending, pending
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from sqlalchemy import case, update

from ..extensions import db
from ..models import Order, PaymentLog
from ..models.orders import (
    ORDER_PENDING,
    ORDER_PROCESSING,
    ORDER_CANCELLED,
    PAYMENT_PENDING,
    PAYMENT_PAID,
    PAYMENT_FAILED,
    PAYMENT_EXPIRED,
    TERMINAL_PAYMENT_STATUSES,
)
from quickshop.time_utils import utcnow
from .concurrency import run_with_retry
from .inventory_service import decrement_for_order
from .payment_gateway import verify_signature

logger = logging.getLogger(__name__)


class PaymentNotificationError(Exception):
    """Base for rejected gateway notifications."""


class InvalidSignatureError(PaymentNotificationError):
    """signature_key does not match the payload."""


class UnknownOrderError(PaymentNotificationError):
    """No order carries the notified order_id."""


@dataclass
class NotificationResult:
    order_id: int
    order_number: str
    payment_status: str
    status: str
    transitioned: bool
    stock_decremented: bool
    failed_lines: list[int] = field(default_factory=list)


def map_transaction_status(transaction_status: str | None, fraud_status: str | None) -> tuple[str, str]:
    """Return (payment_status, order_status) for a gateway transaction status."""
    if transaction_status == "capture":
        if fraud_status == "accept":
            return PAYMENT_PAID, ORDER_PROCESSING
        return PAYMENT_PENDING, ORDER_PENDING
    if transaction_status == "settlement":
        return PAYMENT_PAID, ORDER_PROCESSING
    if transaction_status == "pending":
        return PAYMENT_PENDING, ORDER_PENDING
    if transaction_status in ("deny", "cancel"):
        return PAYMENT_FAILED, ORDER_CANCELLED
    if transaction_status == "expire":
        return PAYMENT_EXPIRED, ORDER_CANCELLED
    return PAYMENT_PENDING, ORDER_PENDING


def _apply_transition(order_id: int, payment_status: str, order_status: str,
                      payment_method: str | None) -> bool:
    """
    Conditionally move the order. Returns True if this call changed the row.

    - Only orders whose payment_status is not yet terminal are touched.
    - A cancelled order (admin-approved cancellation) keeps its status.
    - paid_at is stamped only on the transition into paid.
    - payment_method is kept when the notification carries no payment_type.
    """
    values: dict[str, Any] = {
        "payment_status": payment_status,
        "status": case((Order.status == ORDER_CANCELLED, Order.status), else_=order_status),
        "updated_at": utcnow(),
    }
    if payment_method:
        values["payment_method"] = payment_method
    if payment_status == PAYMENT_PAID:
        values["paid_at"] = utcnow()

    result = db.session.execute(
        update(Order)
        .where(
            Order.id == order_id,
            Order.payment_status.notin_(TERMINAL_PAYMENT_STATUSES),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def handle_notification(payload: Mapping[str, Any], *, server_key: str) -> NotificationResult:
    """
    Process one gateway notification.

    Raises:
        InvalidSignatureError: signature mismatch (nothing written)
        UnknownOrderError: order_id not found (nothing written)
    Any other exception propagates so the caller answers 5xx and the
    gateway redelivers.
    """
    if not verify_signature(payload, server_key):
        logger.warning("Rejected payment notification with invalid signature for %s", payload.get("order_id"))
        raise InvalidSignatureError("Invalid signature")

    order_number = str(payload.get("order_id"))
    transaction_status = payload.get("transaction_status")
    fraud_status = payload.get("fraud_status")
    payment_type = payload.get("payment_type")

    payment_status, order_status = map_transaction_status(transaction_status, fraud_status)

    def _op() -> NotificationResult:
        order = db.session.query(Order).filter_by(order_number=order_number).first()
        if order is None:
            raise UnknownOrderError(f"Order {order_number} not found")

        transitioned = _apply_transition(order.id, payment_status, order_status, payment_type)

        # Previous payment_status was not paid (otherwise the guarded UPDATE
        # would have matched no row), so this delivery owns the decrement.
        stock_decremented = False
        failed_lines: list[int] = []
        if transitioned and payment_status == PAYMENT_PAID:
            report = decrement_for_order(order.id)
            stock_decremented = bool(report.decremented)
            failed_lines = report.failed

        db.session.add(PaymentLog(
            order_id=order.id,
            transaction_id=payload.get("transaction_id"),
            transaction_status=transaction_status,
            payment_type=payment_type,
            fraud_status=fraud_status,
            status_code=str(payload.get("status_code")) if payload.get("status_code") is not None else None,
            raw_response=dict(payload),
        ))
        db.session.commit()
        db.session.refresh(order)

        return NotificationResult(
            order_id=order.id,
            order_number=order.order_number,
            payment_status=order.payment_status,
            status=order.status,
            transitioned=transitioned,
            stock_decremented=stock_decremented,
            failed_lines=failed_lines,
        )

    result = run_with_retry(_op, label=f"Payment notification {order_number}")

    if result.transitioned:
        logger.info("Order %s updated to %s/%s", result.order_number, result.payment_status, result.status)
    else:
        logger.info("Order %s already settled; notification %s recorded only",
                    result.order_number, transaction_status)
    if result.failed_lines:
        logger.error("Order %s paid but stock not adjusted for lines %s",
                     result.order_number, result.failed_lines)
    return result


def get_payment_logs(order_id: int) -> list[PaymentLog]:
    return db.session.query(PaymentLog).filter_by(
        order_id=order_id
    ).order_by(PaymentLog.created_at, PaymentLog.id).all()
