from __future__ import annotations
from datetime import datetime
from academy.time_utils import parse_iso_datetime, DURATION_UNITS

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

PAYMENT_METHODS = ("credit_card", "debit_card", "paypal", "bank_transfer", "cash", "other")
PLAN_LEVELS = ("beginner", "intermediate", "advanced", "pro", "all")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., plan still has active subscriptions)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - extra_fields: non-column keys the caller handles itself (nested lists, ids of links)
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore
    extra_fields: set[str] | None = None


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def coerce_datetime(key: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{key} must be an ISO-8601 datetime")
        if dt is None:
            raise ValidationError(f"{key} must be an ISO-8601 datetime")
        return dt
    raise ValidationError(f"{key} must be a datetime")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be a boolean")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        return coerce_datetime(col.key, value)

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    Keys listed in policy.extra_fields are passed through untouched for the
    service to validate (nested discount lists, category ids).

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    extra = policy.extra_fields or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) is None)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields and k not in extra:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols and k not in extra:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        if k in extra:
            patch[k] = raw
            continue

        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_plan(patch: dict) -> None:
    """
    Plan invariants that are not captured by SQLAlchemy metadata alone.
    Called on create and again on the merged state after an update.
    """
    if "price_cents" in patch:
        price = patch["price_cents"]
        if price is None:
            raise ValidationError("price_cents is required")
        if not isinstance(price, int) or isinstance(price, bool):
            raise ValidationError("price_cents must be an integer")
        if price < 0:
            raise ValidationError("price_cents must be >= 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"price_cents cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")

    if "duration_value" in patch:
        value = patch["duration_value"]
        if value is None or value < 1:
            raise ValidationError("duration_value must be at least 1")

    if "duration_unit" in patch and patch["duration_unit"] not in DURATION_UNITS:
        raise ValidationError(f"duration_unit must be one of {list(DURATION_UNITS)}")

    if "max_sessions" in patch and patch["max_sessions"] is not None:
        if patch["max_sessions"] < 1:
            raise ValidationError("max_sessions must be >= 1 (or null for unlimited)")

    if "trial_period_days" in patch and patch["trial_period_days"] is not None:
        if patch["trial_period_days"] < 0:
            raise ValidationError("trial_period_days must be >= 0")

    if "level" in patch and patch["level"] not in PLAN_LEVELS:
        raise ValidationError(f"level must be one of {list(PLAN_LEVELS)}")

    if "currency" in patch:
        currency = patch["currency"]
        if not currency or len(currency) != 3 or not currency.isalpha():
            raise ValidationError("currency must be a 3-letter code")
        patch["currency"] = currency.upper()


def normalize_discounts(raw: Any) -> list[dict]:
    """Validate the nested discount list of a plan payload."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("discounts must be a list")

    seen: set[str] = set()
    discounts: list[dict] = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValidationError("each discount must be an object")
        code = str(item.get("code") or "").strip()
        if not code:
            raise ValidationError("discount code is required")
        if code in seen:
            raise ValidationError(f"duplicate discount code: {code}")
        seen.add(code)

        percentage = item.get("percentage")
        if isinstance(percentage, bool) or not isinstance(percentage, (int, float)):
            raise ValidationError(f"discount {code}: percentage must be a number")
        if percentage < 0 or percentage > 100:
            raise ValidationError(f"discount {code}: percentage must be between 0 and 100")

        valid_until = item.get("valid_until")
        if valid_until is not None:
            valid_until = coerce_datetime("valid_until", valid_until)

        max_uses = item.get("max_uses")
        if max_uses is not None:
            max_uses = coerce_int("max_uses", max_uses)
            if max_uses < 1:
                raise ValidationError(f"discount {code}: max_uses must be >= 1")

        current_uses = coerce_int("current_uses", item.get("current_uses", 0) or 0)
        if current_uses < 0:
            raise ValidationError(f"discount {code}: current_uses must be >= 0")

        discounts.append({
            "code": code,
            "percentage": float(percentage),
            "valid_until": valid_until,
            "max_uses": max_uses,
            "current_uses": current_uses,
        })
    return discounts


def enforce_payment_method(method: Any) -> str:
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {method}. Must be one of {list(PAYMENT_METHODS)}")
    return method


def enforce_amount(amount_cents: Any, field: str = "amount_cents", *, allow_zero: bool = False) -> int:
    amount = coerce_int(field, amount_cents)
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(f"{field} must be {'>= 0' if allow_zero else 'positive'}")
    if amount > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS}")
    return amount
