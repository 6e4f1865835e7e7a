from __future__ import annotations

from datetime import datetime
from typing import Any

from cashledger.time_utils import parse_iso_datetime, to_utc_naive
from cashledger.models.registers import (
    MOVEMENT_TYPES,
    PAYMENT_METHODS,
    METHOD_OTHER,
)


# Maximum single amount: 99,999,999.99 (9,999,999,999 cents)
# Mirrors the DECIMAL(10, 2) ceiling of the upstream payment tables
MAX_AMOUNT_CENTS = 9_999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


class InvalidStateError(ValidationError):
    """409-level: operation not allowed in the record's current state (e.g., closed session)."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., second open session for a facility)."""


class NotFoundError(LookupError):
    """404-level: referenced facility or session does not exist."""


class UnresolvableAttributionError(LookupError):
    """
    A payment record's timestamp falls inside no session window of its facility.

    Not fatal for a reconciliation pass: the pass records it as skipped.
    """

    def __init__(self, record, message: str | None = None):
        self.record = record
        super().__init__(
            message
            or f"No cash register session for facility {record.facility_id} at {record.occurred_at.isoformat()}"
        )

    def to_dict(self) -> dict:
        return _payment_record_dict(self.record, str(self))


class InvalidPaymentRecordError(ValidationError):
    """
    An upstream payment cannot become a movement (zero, negative or oversized amount).

    Not fatal for a reconciliation pass: the pass records it as skipped.
    """

    def __init__(self, record, message: str):
        self.record = record
        super().__init__(message)

    def to_dict(self) -> dict:
        return _payment_record_dict(self.record, str(self))


def _payment_record_dict(record, reason: str) -> dict:
    return {
        "source": record.source,
        "payment_id": record.id,
        "object_id": record.object_id,
        "facility_id": record.facility_id,
        "amount_cents": record.amount_cents,
        "payment_method": record.method,
        "occurred_at": record.occurred_at.isoformat() if record.occurred_at else None,
        "reason": reason,
    }


# Accepted spellings for the closed payment-method vocabulary
PAYMENT_METHOD_ALIASES = {
    "efectivo": "cash",
    "tarjeta": "card",
    "transferencia": "transfer",
    "credito": "credit_card",
    "debito": "debit_card",
    "mercadopago": "mobile_wallet",
    "mercado_pago": "mobile_wallet",
    "wallet": "mobile_wallet",
}


def normalize_payment_method(value: Any, *, strict: bool = True) -> str:
    """
    Map a payment method string onto the closed vocabulary.

    strict=True (live recording): unknown values raise ValidationError.
    strict=False (upstream feeds, legacy rows): unknown values become "other".
    """
    raw = str(value or "").strip().lower()
    method = PAYMENT_METHOD_ALIASES.get(raw, raw)
    if method in PAYMENT_METHODS:
        return method
    if strict:
        raise ValidationError(f"Invalid payment method: {value!r}. Must be one of {list(PAYMENT_METHODS)}")
    return METHOD_OTHER


def normalize_movement_kind(value: Any) -> str:
    kind = str(value or "").strip().lower()
    if kind not in MOVEMENT_TYPES:
        raise ValidationError(f"Invalid movement type: {value!r}. Must be one of {list(MOVEMENT_TYPES)}")
    return kind


def coerce_cents(value: Any, field: str) -> int:
    """
    Strict integer-cents coercion.

    Rejects bools, floats, decimals-in-strings and scientific notation so that
    amounts always compare exactly.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        cents = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            cents = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS}")
    return cents


def require_positive_cents(value: Any, field: str = "amount_cents") -> int:
    cents = coerce_cents(value, field)
    if cents <= 0:
        raise ValidationError(f"{field} must be positive")
    return cents


def require_non_negative_cents(value: Any, field: str) -> int:
    cents = coerce_cents(value, field)
    if cents < 0:
        raise ValidationError(f"{field} cannot be negative")
    return cents


def coerce_datetime(value: Any, field: str) -> datetime | None:
    """Accept datetime objects or ISO-8601 strings; normalize to UTC-naive."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc_naive(value)
    if isinstance(value, str):
        try:
            return parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
    raise ValidationError(f"{field} must be a datetime")
