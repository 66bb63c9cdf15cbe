# Overview: Flask API routes for catalog operations; parses input and returns JSON responses.

# backend/quickshop/routes/products.py
"""
Catalog routes.

Storefront reads are public and only ever see active products.
Writes live under /api/admin/... and require the admin role.
"""
from flask import Blueprint, request

from ..services import catalog_service
from ..models import Product
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    ValidationError,
    ConflictError,
)
from ..decorators import require_auth, require_admin

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "slug", "description", "price", "stock", "category_id",
        "image_url", "images", "is_active", "sku", "weight",
    },
    required_on_create={"name", "price", "stock"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api")


@products_bp.get("/products")
def list_products():
    """
    List active products, newest first.

    Query params:
    - category: category slug (optional)
    - q: search on name or SKU (optional)
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    return catalog_service.list_products(
        category_slug=request.args.get("category") or None,
        search=request.args.get("q") or None,
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@products_bp.get("/products/<slug>")
def get_product(slug: str):
    product = catalog_service.get_product_by_slug(slug)
    if product is None:
        return {"error": "Product not found"}, 404
    return product.to_dict()


@products_bp.get("/categories")
def list_categories():
    items = catalog_service.list_categories()
    return {"items": items, "count": len(items)}


@products_bp.get("/admin/products")
@require_auth
@require_admin
def admin_list_products():
    """All products including inactive ones, for the admin dashboard."""
    return catalog_service.list_products(
        category_slug=request.args.get("category") or None,
        search=request.args.get("q") or None,
        include_inactive=True,
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@products_bp.post("/admin/products")
@require_auth
@require_admin
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        created = catalog_service.create_product(patch=patch)
    except ConflictError as e:
        return {"error": str(e)}, 409
    except ValueError as e:
        return {"error": str(e)}, 400

    return created, 201


@products_bp.put("/admin/products/<int:product_id>")
@require_auth
@require_admin
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        updated = catalog_service.update_product(product_id=product_id, patch=patch)
    except ConflictError as e:
        return {"error": str(e)}, 409
    except ValueError as e:
        return {"error": str(e)}, 400

    if not updated:
        return {"error": "Product not found"}, 404

    return updated, 200


@products_bp.delete("/admin/products/<int:product_id>")
@require_auth
@require_admin
def delete_product_route(product_id: int):
    if not catalog_service.delete_product(product_id=product_id):
        return {"error": "Product not found"}, 404
    return {"ok": True}, 200


@products_bp.post("/admin/categories")
@require_auth
@require_admin
def create_category_route():
    payload = request.get_json(silent=True) or {}
    try:
        created = catalog_service.create_category(
            name=payload.get("name"),
            slug=payload.get("slug"),
            description=payload.get("description"),
            image_url=payload.get("image_url"),
        )
    except ConflictError as e:
        return {"error": str(e)}, 409
    except ValueError as e:
        return {"error": str(e)}, 400
    return created, 201
