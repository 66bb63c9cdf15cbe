from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Maximum price: Rp 9,999,999,999 keeps totals well inside a 64-bit column
MAX_PRICE = 9_999_999_999
MAX_STOCK = 1_000_000

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
# Indonesian numbers: +62 / 62 country code or trunk prefix 0, then 9-12 digits
PHONE_PATTERN = re.compile(r"^(\+62|62|0)[0-9]{9,12}$")

SHIPPING_REQUIRED_FIELDS = (
    "full_name",
    "email",
    "phone",
    "address",
    "city",
    "province",
    "postal_code",
)


class ValidationError(ValueError):
    """Bad client input; routes answer 400."""


class ConflictError(ValueError):
    """Input is well formed but clashes with stored data; routes answer 409."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """Which columns of a model an API client may write, and which a create needs."""

    writable_fields: frozenset[str] | set[str]
    required_on_create: frozenset[str] | set[str] = frozenset()


def _model_columns(model: DeclarativeMeta) -> dict[str, Any]:
    return {column.key: column for column in model.__mapper__.columns}


def _as_int(key: str, value: Any) -> int:
    # bool is an int subclass; JSON true/false must not become 1/0
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(f"{key} must be a whole number")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            return int(text)
    raise ValidationError(f"{key} must be a whole number")


def _normalize(column, value: Any) -> Any:
    kind = column.type
    if isinstance(kind, Integer):
        return _as_int(column.key, value)
    if isinstance(kind, Boolean):
        return value if isinstance(value, bool) else bool(value)
    if isinstance(kind, (String, Text)):
        text = str(value).strip()
        if text == "" and not column.nullable:
            raise ValidationError(f"{column.key} cannot be blank")
        limit = getattr(kind, "length", None)
        if limit and len(text) > limit:
            raise ValidationError(f"{column.key} is longer than {limit} characters")
        return text
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Turn a JSON body into a column -> value dict for ``model``.

    Keys outside ``policy.writable_fields`` are rejected rather than ignored.
    With ``partial=False`` (create) every ``required_on_create`` key must be
    present; with ``partial=True`` (update) only the supplied keys are checked.
    """
    payload = {} if payload is None else payload
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        absent = sorted(set(policy.required_on_create) - payload.keys())
        if absent:
            raise ValidationError(f"Missing required fields: {', '.join(absent)}")

    columns = _model_columns(model)
    cleaned: dict = {}
    for key, value in payload.items():
        if key not in policy.writable_fields or key not in columns:
            raise ValidationError(f"Field not allowed: {key}")
        column = columns[key]
        if value is None:
            if not column.nullable:
                raise ValidationError(f"{key} cannot be null")
            cleaned[key] = None
        else:
            cleaned[key] = _normalize(column, value)
    return cleaned


def enforce_rules_product(patch: dict) -> None:
    """Range checks for catalogue fields that column types cannot express."""
    if "price" in patch and patch["price"] is not None:
        price = patch["price"]
        if price < 0:
            raise ValidationError("price must be >= 0")
        if price > MAX_PRICE:
            raise ValidationError(f"price cannot exceed {MAX_PRICE}")

    if "stock" in patch and patch["stock"] is not None:
        stock = patch["stock"]
        if stock < 0:
            raise ValidationError("stock must be >= 0")
        if stock > MAX_STOCK:
            raise ValidationError(f"stock cannot exceed {MAX_STOCK}")

    if "images" in patch and patch["images"] is not None:
        images = patch["images"]
        if not isinstance(images, list) or not all(isinstance(i, str) for i in images):
            raise ValidationError("images must be a list of URLs")

    if "weight" in patch and patch["weight"] is not None and patch["weight"] < 0:
        raise ValidationError("weight must be >= 0")


def validate_shipping(payload: dict | None) -> dict:
    """
    Validate the checkout shipping form.

    Returns a normalized copy (strings stripped, notes optional).
    """
    if not isinstance(payload, dict):
        raise ValidationError("shipping details required")

    cleaned = {}
    for field in SHIPPING_REQUIRED_FIELDS:
        value = payload.get(field)
        value = str(value).strip() if value is not None else ""
        if not value:
            raise ValidationError("Please fill in all required fields")
        cleaned[field] = value

    if not EMAIL_PATTERN.match(cleaned["email"]):
        raise ValidationError("Please enter a valid email address")

    if not PHONE_PATTERN.match(cleaned["phone"]):
        raise ValidationError("Please enter a valid phone number")

    notes = payload.get("notes")
    if notes is not None:
        notes = str(notes).strip() or None
    cleaned["notes"] = notes
    return cleaned


def parse_quantity(value: Any, field: str = "quantity") -> int:
    """Strict positive integer for cart and order lines."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if value < 1:
        raise ValidationError(f"{field} must be >= 1")
    return value
