from __future__ import annotations

from ..extensions import db
from quickshop.time_utils import to_utc_z

# Order lifecycle
ORDER_PENDING = "pending"
ORDER_PAID = "paid"
ORDER_PROCESSING = "processing"
ORDER_SHIPPED = "shipped"
ORDER_DELIVERED = "delivered"
ORDER_CANCELLED = "cancelled"

ORDER_STATUSES = (
    ORDER_PENDING,
    ORDER_PAID,
    ORDER_PROCESSING,
    ORDER_SHIPPED,
    ORDER_DELIVERED,
    ORDER_CANCELLED,
)

# Payment lifecycle
PAYMENT_UNPAID = "unpaid"
PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"
PAYMENT_EXPIRED = "expired"

PAYMENT_STATUSES = (
    PAYMENT_UNPAID,
    PAYMENT_PENDING,
    PAYMENT_PAID,
    PAYMENT_FAILED,
    PAYMENT_EXPIRED,
)
TERMINAL_PAYMENT_STATUSES = (PAYMENT_PAID, PAYMENT_FAILED, PAYMENT_EXPIRED)

# Cancellation review
CANCELLATION_PENDING = "pending"
CANCELLATION_APPROVED = "approved"
CANCELLATION_REJECTED = "rejected"


class Order(db.Model):
    """
    Customer order.

    Identifying fields (order_number, items, shipping snapshot, amounts) are
    written once at checkout. Only the lifecycle columns move afterwards, and
    those are changed with conditional UPDATEs (see payment_service and
    cancellation_service) rather than read-modify-write.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # External-facing identifier, also the gateway's order_id
    order_number = db.Column(db.String(64), nullable=False, unique=True, index=True)

    # Amounts (whole Rupiah)
    subtotal = db.Column(db.Integer, nullable=False)
    tax = db.Column(db.Integer, nullable=False, default=0)
    shipping_fee = db.Column(db.Integer, nullable=False, default=0)
    total = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=ORDER_PENDING, index=True)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_UNPAID, index=True)
    payment_method = db.Column(db.String(64), nullable=True)
    payment_token = db.Column(db.String(255), nullable=True)
    payment_redirect_url = db.Column(db.String(512), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Shipping snapshot
    shipping_name = db.Column(db.String(255), nullable=False)
    shipping_email = db.Column(db.String(255), nullable=False)
    shipping_phone = db.Column(db.String(32), nullable=False)
    shipping_address = db.Column(db.Text, nullable=False)
    shipping_city = db.Column(db.String(128), nullable=False)
    shipping_province = db.Column(db.String(128), nullable=False)
    shipping_postal_code = db.Column(db.String(16), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    user = db.relationship("User", backref=db.backref("orders", lazy=True))
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "order_number": self.order_number,
            "subtotal": self.subtotal,
            "tax": self.tax,
            "shipping_fee": self.shipping_fee,
            "total": self.total,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "payment_token": self.payment_token,
            "payment_redirect_url": self.payment_redirect_url,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "shipping_name": self.shipping_name,
            "shipping_email": self.shipping_email,
            "shipping_phone": self.shipping_phone,
            "shipping_address": self.shipping_address,
            "shipping_city": self.shipping_city,
            "shipping_province": self.shipping_province,
            "shipping_postal_code": self.shipping_postal_code,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["order_items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Immutable snapshot of a cart line at checkout."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    # Nullable so deleting a product never rewrites order history
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    product_image = db.Column(db.String(512), nullable=True)
    product_sku = db.Column(db.String(64), nullable=True)
    price = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    subtotal = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_image": self.product_image,
            "product_sku": self.product_sku,
            "price": self.price,
            "quantity": self.quantity,
            "subtotal": self.subtotal,
        }


class OrderCancellation(db.Model):
    """
    Customer cancellation request awaiting admin review.

    At most one pending request per order: the partial unique index backs up
    the service-level check when two requests race.
    """
    __tablename__ = "order_cancellations"
    __table_args__ = (
        db.Index(
            "uq_order_cancellations_one_pending",
            "order_id",
            unique=True,
            sqlite_where=db.text("status = 'pending'"),
            postgresql_where=db.text("status = 'pending'"),
        ),
        db.Index("ix_order_cancellations_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    reason = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=CANCELLATION_PENDING)

    admin_notes = db.Column(db.Text, nullable=True)
    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("cancellations", lazy=True))

    def to_dict(self, include_order: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_id": self.order_id,
            "user_id": self.user_id,
            "reason": self.reason,
            "status": self.status,
            "admin_notes": self.admin_notes,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": to_utc_z(self.reviewed_at) if self.reviewed_at else None,
            "created_at": to_utc_z(self.created_at),
        }
        if include_order and self.order is not None:
            data["order"] = {
                "order_number": self.order.order_number,
                "total": self.order.total,
                "shipping_name": self.order.shipping_name,
                "status": self.order.status,
                "payment_status": self.order.payment_status,
            }
        return data


class PaymentLog(db.Model):
    """
    Raw gateway notification audit trail.

    IMMUTABLE: Never update or delete. Append-only for replay/debugging.
    """
    __tablename__ = "payment_logs"
    __table_args__ = (
        db.Index("ix_payment_logs_order_created", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)

    transaction_id = db.Column(db.String(128), nullable=True, index=True)
    transaction_status = db.Column(db.String(32), nullable=True)
    payment_type = db.Column(db.String(64), nullable=True)
    fraud_status = db.Column(db.String(32), nullable=True)
    status_code = db.Column(db.String(8), nullable=True)
    raw_response = db.Column(db.JSON, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "transaction_id": self.transaction_id,
            "transaction_status": self.transaction_status,
            "payment_type": self.payment_type,
            "fraud_status": self.fraud_status,
            "status_code": self.status_code,
            "raw_response": self.raw_response,
            "created_at": to_utc_z(self.created_at),
        }
