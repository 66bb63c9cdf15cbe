# Overview: Cart line type, cart errors and the guest/user merge rule.

from __future__ import annotations

from dataclasses import dataclass, asdict, replace
from typing import Any, Iterable, Mapping, Optional

PLACEHOLDER_IMAGE = "/placeholder-product.jpg"


class CartError(Exception):
    """Base class for rejected cart mutations."""


class OutOfStockError(CartError):
    def __init__(self, product_id: int, stock: int):
        super().__init__(f"Only {stock} units available")
        self.product_id = product_id
        self.stock = stock


class InsufficientStockError(CartError):
    def __init__(self, product_id: int, requested: int, stock: int):
        super().__init__(f"Only {stock} units available")
        self.product_id = product_id
        self.requested = requested
        self.stock = stock


@dataclass
class CartItem:
    """
    One cart line. `stock` is the snapshot taken when the product was added
    (or when the cart was last read back from the server).
    """
    id: int
    name: str
    slug: str
    price: int
    quantity: int
    image: str
    stock: int
    category: Optional[str] = None

    @classmethod
    def from_product(cls, product: Mapping[str, Any], quantity: int = 1) -> "CartItem":
        """
        Build a line from a catalog product payload.

        Accepts both the cart shape (`image`) and the product API shape
        (`image_url`, nested `category` dict).
        """
        category = product.get("category")
        if isinstance(category, Mapping):
            category = category.get("name")
        return cls(
            id=int(product["id"]),
            name=product["name"],
            slug=product.get("slug") or "",
            price=int(product["price"]),
            quantity=quantity,
            image=product.get("image") or product.get("image_url") or PLACEHOLDER_IMAGE,
            stock=int(product.get("stock") or 0),
            category=category,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CartItem":
        return cls.from_product(data, quantity=int(data["quantity"]))

    def to_dict(self) -> dict:
        return asdict(self)


def merge_carts(guest: Iterable[CartItem], db: Iterable[CartItem]) -> list[CartItem]:
    """
    Merge a guest cart into the user's persisted cart.

    Starts from the persisted lines in their order. A guest line for a
    product already present adds its quantity, capped at the guest line's
    stock snapshot; any other guest line is appended unchanged. Inputs
    are not mutated.
    """
    merged = [replace(item) for item in db]
    by_id = {item.id: item for item in merged}

    for g in guest:
        existing = by_id.get(g.id)
        if existing is not None:
            existing.quantity = min(existing.quantity + g.quantity, g.stock)
        else:
            line = replace(g)
            merged.append(line)
            by_id[line.id] = line

    return merged
