from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from flask import current_app, has_app_context
from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from stockpos.time_utils import parse_iso_datetime


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

DEFAULT_MAX_PAGE_LIMIT = 200


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Per-endpoint allowlist over a model's columns.

    - writable_fields: what clients may send at all
    - required_on_create: must be present (and non-null) on create
    - omit_if_blank: null or blank strings are dropped so the service default applies
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = field(default_factory=frozenset)
    omit_if_blank: frozenset[str] = field(default_factory=frozenset)


def _to_int(key: str, value: Any) -> int:
    # bool is an int subclass; JSON true/false is never a quantity
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    if isinstance(value, str):
        text = value.strip()
        if "e" in text.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if "." in text:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(text)
        except ValueError:
            pass
    raise ValidationError(f"{key} must be an integer")


def _to_datetime(key: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            parsed = parse_iso_datetime(value)
        except ValueError:
            parsed = None
        if parsed is not None:
            return parsed
    raise ValidationError(f"{key} must be an ISO-8601 datetime")


def _to_text(key: str, value: Any, column) -> str:
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise ValidationError(f"{key} must be a string")
    text = str(value).strip()
    if not text and not column.nullable:
        raise ValidationError(f"{key} cannot be blank")
    length = getattr(column.type, "length", None)
    if length and len(text) > length:
        raise ValidationError(f"{key} exceeds max length {length}")
    return text


def _coerce(key: str, value: Any, column) -> Any:
    coltype = column.type
    if isinstance(coltype, Integer):
        return _to_int(key, value)
    if isinstance(coltype, DateTime):
        return _to_datetime(key, value)
    if isinstance(coltype, (String, Text)):
        return _to_text(key, value, column)
    raise ValidationError(f"{key} is not writable")


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool = False,
) -> dict:
    """
    Clean a JSON object against the model's column metadata and a policy.

    Only integer, datetime and string columns are accepted. Returns a new dict
    holding the coerced writable fields; omitted keys stay omitted.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    payload = {
        k: v for k, v in payload.items()
        if not (k in policy.omit_if_blank and _is_blank(v))
    }

    if not partial:
        missing = sorted(policy.required_on_create - set(payload))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    columns = {c.key: c for c in model.__mapper__.columns}

    patch: dict = {}
    for key, raw in payload.items():
        if key not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {key}")
        column = columns.get(key)
        if column is None:
            raise ValidationError(f"Unknown field: {key}")

        if raw is None:
            if not column.nullable or key in policy.required_on_create:
                raise ValidationError(f"{key} cannot be null")
            patch[key] = None
        else:
            patch[key] = _coerce(key, raw, column)

    return patch


def normalize_pagination(page, limit, *, default_limit: int = 50) -> tuple[int, int]:
    """
    page >= 1 (default 1); limit clamped to 1..MAX_PAGE_LIMIT (default default_limit).
    Non-numeric input falls back to the defaults.
    """
    max_limit = DEFAULT_MAX_PAGE_LIMIT
    if has_app_context():
        max_limit = current_app.config.get("MAX_PAGE_LIMIT", DEFAULT_MAX_PAGE_LIMIT)

    try:
        page = int(page) if page is not None else 1
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(limit) if limit is not None else default_limit
    except (TypeError, ValueError):
        limit = default_limit

    return max(1, page), max(1, min(max_limit, limit))


def require_int(name: str, value, *, minimum: int | None = None) -> int:
    """Strict integer check used by services (bools and floats rejected)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer")
    if minimum is not None and value < minimum:
        raise ValidationError(f"{name} must be >= {minimum}")
    return value


def enforce_rules_movement(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    movement_type = patch.get("type")
    if movement_type in ("in", "out"):
        if patch.get("quantity") is None or patch["quantity"] <= 0:
            raise ValidationError(f"quantity must be > 0 for {movement_type.upper()} movement")
        if patch.get("new_quantity") is not None:
            raise ValidationError(f"new_quantity must be omitted for {movement_type.upper()} movement")
    elif movement_type == "adjustment":
        if patch.get("new_quantity") is None or patch["new_quantity"] < 0:
            raise ValidationError("new_quantity must be provided for adjustment and be >= 0")
        if patch.get("quantity") is not None:
            raise ValidationError("quantity must be omitted for adjustment")


def enforce_rules_sale_line(patch: dict) -> None:
    if patch["quantity"] < 1:
        raise ValidationError("quantity must be >= 1")
    price = patch["unit_price_cents"]
    if price < 0:
        raise ValidationError("unit_price_cents must be >= 0")
    if price > MAX_PRICE_CENTS:
        raise ValidationError(f"unit_price_cents cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")


def enforce_rules_credit_payment(patch: dict) -> None:
    # Minimum payment is one cent (0.01)
    if patch.get("amount_cents") is None or patch["amount_cents"] < 1:
        raise ValidationError("amount_cents must be >= 1")
