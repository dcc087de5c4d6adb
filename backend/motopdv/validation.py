# Overview: Request payload validation against model columns and per-entity write policies.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable

from sqlalchemy import Boolean, Date, DateTime, Float, Integer, JSON, String, Text
from sqlalchemy.orm import DeclarativeMeta

from motopdv.time_utils import parse_iso_date, parse_iso_datetime


# R$ 9.999.999,99 is the largest amount accepted anywhere in the shop
MAX_PRICE_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate SKU)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Which fields a client may send for an entity.

    writable_fields is the allowlist; anything else in the payload is
    rejected. required_on_create applies to create (non-partial) payloads.
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)


def _to_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{key} must be an integer")

    text = value.strip()
    if "e" in text.lower():
        raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
    if "." in text or "," in text:
        raise ValidationError(f"{key} must be an integer (no decimals)")
    try:
        return int(text)
    except ValueError:
        raise ValidationError(f"{key} must be an integer")


def _to_float(key: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be a number")


def _to_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in ("true", "false", "1", "0"):
        return value.strip().lower() in ("true", "1")
    raise ValidationError(f"{key} must be true or false")


def _to_datetime(key: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    parsed = None
    if isinstance(value, str):
        try:
            parsed = parse_iso_datetime(value)
        except ValueError:
            parsed = None
    if parsed is None:
        raise ValidationError(f"{key} must be an ISO-8601 datetime")
    return parsed


def _to_date(key: str, value: Any) -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    parsed = None
    if isinstance(value, str):
        try:
            parsed = parse_iso_date(value)
        except ValueError:
            parsed = None
    if parsed is None:
        raise ValidationError(f"{key} must be a date (YYYY-MM-DD)")
    return parsed


def _to_text(key: str, value: Any) -> str:
    return str(value).strip()


_COERCERS: tuple[tuple[type, Callable[[str, Any], Any]], ...] = (
    (Integer, _to_int),
    (Float, _to_float),
    (Boolean, _to_bool),
    (DateTime, _to_datetime),
    (Date, _to_date),
    (JSON, lambda key, value: value),
    (String, _to_text),
    (Text, _to_text),
)


def _coerce(column, value: Any):
    for column_type, coerce in _COERCERS:
        if isinstance(column.type, column_type):
            return coerce(column.key, value)
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Clean a JSON payload for `model` and return the patch to apply.

    partial=False (create): every required_on_create field must be present
    partial=True  (update): only the keys sent are checked

    Types, NOT NULL and String(n) lengths come from the model's columns.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create
    if not partial:
        missing = sorted(name for name in required if payload.get(name) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    columns = {c.key: c for c in model.__mapper__.columns}
    unknown = [k for k in payload if k not in policy.writable_fields]
    if unknown:
        raise ValidationError(f"Field not allowed: {unknown[0]}")

    patch: dict = {}
    for key, raw in payload.items():
        column = columns.get(key)
        if column is None:
            raise ValidationError(f"Unknown field: {key}")

        if raw is None:
            if not column.nullable:
                raise ValidationError(f"{key} cannot be null")
            patch[key] = None
            continue

        value = _coerce(column, raw)
        if isinstance(value, str):
            if value == "" and key in required and not column.nullable:
                raise ValidationError(f"{key} cannot be blank")
            max_length = getattr(column.type, "length", None)
            if max_length and len(value) > max_length:
                raise ValidationError(f"{key} exceeds max length {max_length}")
        patch[key] = value

    return patch


# ---------------------------------------------------------------------------
# Per-entity rules that column metadata cannot express
# ---------------------------------------------------------------------------

def _check_cents(patch: dict, key: str, *, allow_zero: bool = True) -> None:
    value = patch.get(key)
    if value is None:
        return
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValidationError(f"{key} must be {'>=' if allow_zero else '>'} 0")
    if value > MAX_PRICE_CENTS:
        raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS} (R$ {MAX_PRICE_CENTS / 100:,.2f})")


def _check_percent(patch: dict, key: str) -> None:
    value = patch.get(key)
    if value is not None and not 0 <= value <= 100:
        raise ValidationError(f"{key} must be between 0 and 100")


def enforce_rules_product(patch: dict) -> None:
    _check_cents(patch, "price_cost_cents")
    _check_cents(patch, "price_sell_cents")
    for key in ("quantity", "min_stock"):
        if patch.get(key) is not None and patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")


def enforce_rules_service(patch: dict) -> None:
    _check_cents(patch, "base_price_cents")
    commission_type = patch.get("commission_type")
    if "commission_type" in patch and commission_type not in ("FIXED", "PERCENT"):
        raise ValidationError("commission_type must be FIXED or PERCENT")
    value = patch.get("commission_value")
    if value is None:
        return
    if value < 0:
        raise ValidationError("commission_value must be >= 0")
    if commission_type == "PERCENT" and value > 100:
        raise ValidationError("commission_value cannot exceed 100 for PERCENT")


def enforce_rules_employee(patch: dict) -> None:
    _check_percent(patch, "default_commission_percent")


def enforce_rules_expense(patch: dict) -> None:
    _check_cents(patch, "amount_cents", allow_zero=False)
