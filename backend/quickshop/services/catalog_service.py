# backend/quickshop/services/catalog_service.py
"""
Catalog Service

Storefront reads (active products, categories) and admin product
management. Prices and stock are validated by the route layer via
validation.enforce_rules_product before reaching here.
"""
from __future__ import annotations

import re

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Category, Product
from ..validation import ConflictError

PRODUCT_MUTABLE_FIELDS = {
    "name", "slug", "description", "price", "stock", "category_id",
    "image_url", "images", "is_active", "sku", "weight",
}


def slugify(value: str) -> str:
    """'Glow Serum 30ml!' -> 'glow-serum-30ml'"""
    slug = re.sub(r"[^a-z0-9]+", "-", (value or "").lower())
    return slug.strip("-")


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _paginate(base_query, page: int | None, per_page: int | None) -> dict:
    if page is None:
        rows = base_query.all()
        return {"items": [r.to_dict() for r in rows], "count": len(rows)}

    per_page = min(per_page or 20, 100)  # Default 20, max 100
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    rows = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [r.to_dict() for r in rows],
        "count": len(rows),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def list_products(
    *,
    category_slug: str | None = None,
    search: str | None = None,
    include_inactive: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Product listing, newest first.

    Storefront callers get active products only; the admin dashboard passes
    include_inactive=True. `search` matches name or SKU, case-insensitive.
    """
    query = db.session.query(Product)

    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))

    if category_slug:
        query = query.join(Category, Product.category_id == Category.id).filter(Category.slug == category_slug)

    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.filter(or_(
            func.lower(Product.name).like(pattern),
            func.lower(Product.sku).like(pattern),
        ))

    query = query.order_by(Product.created_at.desc(), Product.id.desc())
    return _paginate(query, page, per_page)


def get_product_by_slug(slug: str, *, include_inactive: bool = False) -> Product | None:
    query = db.session.query(Product).filter_by(slug=slug)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    return query.first()


def _ensure_category(category_id: int | None) -> None:
    if category_id is not None and db.session.get(Category, category_id) is None:
        raise ValueError("category not found")


def _commit_or_conflict() -> None:
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Slug or SKU already exists")


def create_product(*, patch: dict) -> dict:
    """
    Create product using a validated patch dict.

    The slug is derived from the name when not supplied.
    """
    patch = dict(patch)
    if not patch.get("slug"):
        patch["slug"] = slugify(patch.get("name", ""))
    if not patch["slug"]:
        raise ValueError("slug could not be derived from name")

    _ensure_category(patch.get("category_id"))

    p = Product(images=[])
    apply_product_patch(p, patch)
    db.session.add(p)
    _commit_or_conflict()
    return p.to_dict()


def update_product(*, product_id: int, patch: dict) -> dict | None:
    p = db.session.get(Product, product_id)
    if p is None:
        return None

    if "category_id" in patch:
        _ensure_category(patch["category_id"])

    apply_product_patch(p, patch)
    _commit_or_conflict()
    return p.to_dict()


def delete_product(*, product_id: int) -> bool:
    p = db.session.get(Product, product_id)
    if p is None:
        return False

    db.session.delete(p)
    db.session.commit()
    return True


def list_categories() -> list[dict]:
    """Categories by name, each with its count of active products."""
    counts = dict(
        db.session.query(Product.category_id, func.count(Product.id))
        .filter(Product.is_active.is_(True))
        .group_by(Product.category_id)
        .all()
    )
    categories = db.session.query(Category).order_by(Category.name.asc()).all()
    result = []
    for c in categories:
        data = c.to_dict()
        data["count"] = counts.get(c.id, 0)
        result.append(data)
    return result


def create_category(*, name: str, slug: str | None = None, description: str | None = None,
                    image_url: str | None = None) -> dict:
    name = (name or "").strip()
    if not name:
        raise ValueError("name is required")

    category = Category(
        name=name,
        slug=slugify(slug or name),
        description=description,
        image_url=image_url,
    )
    db.session.add(category)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Category slug already exists")
    return category.to_dict()


def get_catalog_stats(low_stock_threshold: int = 10) -> dict:
    """Admin dashboard counters."""
    total, active, low_stock, value = db.session.query(
        func.count(Product.id),
        func.coalesce(func.sum(db.case((Product.is_active.is_(True), 1), else_=0)), 0),
        func.coalesce(func.sum(db.case((Product.stock < low_stock_threshold, 1), else_=0)), 0),
        func.coalesce(func.sum(Product.price * Product.stock), 0),
    ).one()

    return {
        "total_products": int(total),
        "active_products": int(active),
        "low_stock_products": int(low_stock),
        "total_value": int(value),
    }


def list_low_stock_products(threshold: int = 10) -> list[Product]:
    return (
        db.session.query(Product)
        .filter(Product.stock < threshold)
        .order_by(Product.stock.asc(), Product.name.asc())
        .all()
    )
