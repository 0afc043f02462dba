from __future__ import annotations
from datetime import datetime
from bikeshop.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from bikeshop.errors import ValidationError
from bikeshop.models.bikes import BIKE_TYPES
from bikeshop.models.loaners import LOAN_TYPES
from bikeshop.services.image_store import name_from_url


# Maximum price: 9.999.999,99 € (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

BIKE_MONEY_FIELDS = ("purchase_price", "additional_costs", "sell_price", "final_sell_price")

LOAN_DETAIL_FIELDS = {
    "loan_type", "loanee_name", "loanee_phone", "loanee_dni",
    "start_date", "rental_duration", "loan_reason",
}
LOAN_DETAIL_MAX_LENGTH = 255


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    # Keyed by attribute name; stored column names may differ (refNumber -> ref_number)
    mapper = model.__mapper__
    return {prop.key: prop.columns[0] for prop in mapper.column_attrs}


def _coerce_value(key: str, col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
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

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
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

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

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

    Keys are model attribute names (snake_case), not the stored column names.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(k, col, raw)

        # Blank string check for non-nullable String fields; Text (observations) may be empty
        if isinstance(col.type, String) and not isinstance(col.type, Text) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_money(field: str, value: Any) -> None:
    if value is None:
        return
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if value < 0:
        raise ValidationError(f"{field} must be >= 0")
    if value > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS}")


def enforce_rules_bike(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    for field in BIKE_MONEY_FIELDS:
        if field in patch:
            enforce_money(field, patch[field])

    if "type" in patch and patch["type"] not in BIKE_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(BIKE_TYPES)}")

    enforce_image_url(patch.get("image_url"))


def enforce_image_url(value: Any) -> None:
    """image_url is null, one of our image store URLs, or an absolute http(s) URL."""
    if value is None or name_from_url(value):
        return
    parsed = urlparse(value)
    if parsed.scheme in ("http", "https") and parsed.netloc:
        return
    raise ValidationError("image_url must be an image store URL or an absolute http(s) URL")


def enforce_rules_loaner_ref(ref_number: str, prefix: str) -> None:
    if not ref_number.startswith(prefix):
        raise ValidationError(f"ref_number must start with {prefix!r}")


def validate_loan_details(details: Any) -> dict:
    """
    Validate a loan/rental request and return the cleaned details.

    RULES:
    - loan_type is required and must be Loan or Rental
    - rental_duration is only accepted for Rental
    - loan_reason is only accepted for Loan
    - start_date is always assigned by the server, never accepted here
    """
    if not isinstance(details, dict):
        raise ValidationError("loan details must be an object")

    for k in details.keys():
        if k == "start_date":
            raise ValidationError("start_date is assigned by the server")
        if k not in LOAN_DETAIL_FIELDS:
            raise ValidationError(f"Field not allowed: {k}")

    loan_type = details.get("loan_type")
    if loan_type not in LOAN_TYPES:
        raise ValidationError(f"loan_type must be one of: {', '.join(LOAN_TYPES)}")

    if loan_type == "Loan" and details.get("rental_duration") is not None:
        raise ValidationError("rental_duration is only allowed for Rental")
    if loan_type == "Rental" and details.get("loan_reason") is not None:
        raise ValidationError("loan_reason is only allowed for Loan")

    cleaned = {"loan_type": loan_type}
    for k in ("loanee_name", "loanee_phone", "loanee_dni", "rental_duration", "loan_reason"):
        raw = details.get(k)
        if raw is None:
            continue
        val = str(raw).strip()
        if len(val) > LOAN_DETAIL_MAX_LENGTH:
            raise ValidationError(f"{k} exceeds max length {LOAN_DETAIL_MAX_LENGTH}")
        if val:
            cleaned[k] = val
    return cleaned


def coerce_cents(field: str, value: Any) -> int:
    """Money argument outside a model payload: integer cents in [0, MAX_PRICE_CENTS]."""
    if value is None:
        raise ValidationError(f"{field} is required")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped.isdigit():
            raise ValidationError(f"{field} must be an integer number of cents")
        value = int(stripped)
    enforce_money(field, value)
    return value
