# Overview: Payload validation against model column metadata plus per-entity business rules.

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from sqlalchemy import Boolean, DateTime, Enum, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from oudledger.services.conversion_engine import UnitFamily, unit_family
from oudledger.time_utils import parse_iso_datetime


# Maximum gift card face value: 9,999,999.99 (999,999,999 cents)
# Keeps amounts inside 32-bit integer columns on every backend
MAX_GIFT_CARD_CENTS = 999_999_999

# Plausible density range for liquids and resins handled in store (g/ml)
MAX_DENSITY = 25.0


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate material name)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Which columns a client may set on a model.

    - writable_fields: allowlist; anything else in the payload is rejected
    - required_on_create: must be present when partial=False
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)


# =============================================================================
# COERCERS (one per column type; each returns the normalized value or raises)
# =============================================================================

def _coerce_int(key: str, value: Any) -> int:
    # bool is an int subclass; floats and "12.5"/"1e3" strings are refused
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be an integer")

    text = value.strip()
    if "e" in text.lower():
        raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
    if "." in text:
        raise ValidationError(f"{key} must be an integer (no decimals)")
    try:
        return int(text)
    except ValueError:
        raise ValidationError(f"{key} must be an integer")


def _coerce_float(key: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValidationError(f"{key} must be a number")
    try:
        number = float(value.strip() if isinstance(value, str) else value)
    except ValueError:
        raise ValidationError(f"{key} must be a number")
    if not math.isfinite(number):
        raise ValidationError(f"{key} must be a finite number")
    return number


def _coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "1", "yes"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("false", "0", "no"):
        return False
    if isinstance(value, int):
        return bool(value)
    raise ValidationError(f"{key} must be a boolean")


def _coerce_datetime(key: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a datetime")
    try:
        parsed = parse_iso_datetime(value)
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(f"{key} must be an ISO-8601 datetime")
    return parsed


def _coercer_for(col) -> Callable[[str, Any], Any]:
    coltype = col.type

    # Enum before String: sqlalchemy Enum is a String subtype
    if isinstance(coltype, Enum):
        allowed = list(coltype.enums)

        def _coerce_enum(key: str, value: Any) -> str:
            normalized = str(value).strip().lower()
            if normalized not in allowed:
                raise ValidationError(f"{key} must be one of: {', '.join(allowed)}")
            return normalized

        return _coerce_enum

    if isinstance(coltype, Integer):
        return _coerce_int
    if isinstance(coltype, Float):
        return _coerce_float
    if isinstance(coltype, Boolean):
        return _coerce_bool
    if isinstance(coltype, DateTime):
        return _coerce_datetime
    if isinstance(coltype, (String, Text)):
        return lambda key, value: str(value).strip()
    return lambda key, value: value


def _check_text(col, value: Any) -> None:
    if not isinstance(col.type, (String, Text)) or not isinstance(value, str):
        return
    if value == "" and not col.nullable:
        raise ValidationError(f"{col.key} cannot be blank")
    length = getattr(col.type, "length", None)
    if length and len(value) > length:
        raise ValidationError(f"{col.key} exceeds max length {length}")


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validate and normalize an incoming JSON object for `model`.

    Column metadata drives the checks (type, nullability, String length);
    the policy decides which keys are accepted at all. Returns a patch
    holding only the keys that were sent, already coerced.

    partial=False: create semantics (required_on_create enforced)
    partial=True:  patch semantics (only the keys present are checked)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(policy.required_on_create - set(payload))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    columns = {c.key: c for c in model.__mapper__.columns}
    for key in payload:
        if key not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {key}")
        if key not in columns:
            raise ValidationError(f"Unknown field: {key}")

    patch: dict = {}
    for key, raw in payload.items():
        col = columns[key]
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{key} cannot be null")
            patch[key] = None
            continue

        value = _coercer_for(col)(key, raw)
        _check_text(col, value)
        patch[key] = value

    return patch


# =============================================================================
# BUSINESS RULES (beyond what column metadata can express)
# =============================================================================

def enforce_rules_gift_card(patch: dict) -> None:
    amount = patch.get("amount_cents")
    if amount is None:
        raise ValidationError("amount_cents is required")
    if amount <= 0:
        raise ValidationError("amount_cents must be > 0")
    if amount > MAX_GIFT_CARD_CENTS:
        raise ValidationError(f"amount_cents cannot exceed {MAX_GIFT_CARD_CENTS} ({MAX_GIFT_CARD_CENTS / 100:,.2f})")

    currency = patch.get("currency")
    if currency is not None and (len(currency) != 3 or not currency.isalpha()):
        raise ValidationError("currency must be a 3-letter ISO code")


def enforce_rules_material(patch: dict) -> None:
    density = patch.get("density")
    if density is not None and not (0 < density <= MAX_DENSITY):
        raise ValidationError(f"density must be > 0 and <= {MAX_DENSITY} g/ml")

    viscosity = patch.get("viscosity")
    if viscosity is not None and viscosity < 0:
        raise ValidationError("viscosity must be >= 0")


def enforce_rules_conversion_rule(patch: dict) -> None:
    factor = patch.get("factor")
    if factor is not None and factor <= 0:
        raise ValidationError("factor must be > 0")

    from_unit, to_unit = patch.get("from_unit"), patch.get("to_unit")
    for key, unit in (("from_unit", from_unit), ("to_unit", to_unit)):
        if unit is not None and unit_family(unit) is None:
            raise ValidationError(f"{key} is not a known unit: {unit}")

    if from_unit and from_unit == to_unit:
        raise ValidationError("from_unit and to_unit must differ")

    # Weight and volume pairs always resolve through the standard table or
    # density, so an unscoped rule for them could never apply
    if patch.get("material_id") is None and from_unit and to_unit:
        families = {unit_family(from_unit), unit_family(to_unit)}
        if families <= {UnitFamily.WEIGHT, UnitFamily.VOLUME}:
            raise ValidationError(
                f"{from_unit} to {to_unit} is covered by the standard conversions; scope the rule to a material"
            )
