from __future__ import annotations

from ..extensions import db
from quickshop.time_utils import to_utc_z


class CartItemRecord(db.Model):
    """
    Server-side mirror of an authenticated shopper's cart line.

    The browser-held cart is authoritative while the shopper is browsing;
    these rows only exist so the cart follows the user across devices and
    can be merged with a guest cart on login.
    """
    __tablename__ = "cart_items"
    __table_args__ = (
        db.UniqueConstraint("user_id", "product_id", name="uq_cart_items_user_product"),
        db.CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")

    def to_cart_item(self) -> dict:
        """Shape used by the cart store: product fields plus quantity."""
        p = self.product
        return {
            "id": p.id,
            "name": p.name,
            "slug": p.slug,
            "price": p.price,
            "quantity": self.quantity,
            "image": p.image_url or "/placeholder-product.jpg",
            "stock": p.stock,
            "category": p.category.name if p.category else None,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
