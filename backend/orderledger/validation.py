from __future__ import annotations

from datetime import date
from typing import Any

from .time_utils import parse_iso_date


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999
MAX_QUANTITY = 1_000_000


class ValidationError(ValueError):
    """400-level input problem, with optional field-level detail."""

    def __init__(self, message: str, details: dict[str, list[str]] | None = None):
        super().__init__(message)
        self.details = details or {}


class NotFoundError(LookupError):
    """404-level: id not resolvable within the caller's organization."""


class ConflictError(ValueError):
    """409-level business rule conflict (duplicate order number, cross-tenant reference)."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class LedgerIntegrityError(RuntimeError):
    """Stock counter diverged from its ledger. Never expected at runtime."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class FieldErrors:
    """Collects per-field messages and raises one ValidationError at the end."""

    def __init__(self):
        self.errors: dict[str, list[str]] = {}

    def add(self, field: str, message: str) -> None:
        self.errors.setdefault(field, []).append(message)

    def __bool__(self) -> bool:
        return bool(self.errors)

    def raise_if_any(self, message: str = "Invalid order data") -> None:
        if self.errors:
            raise ValidationError(message, details=self.errors)


def coerce_int(value: Any, field: str, errors: FieldErrors) -> int | None:
    """
    Strict integer coercion: rejects bools, floats, decimals and
    scientific notation. Returns None (and records an error) on failure.
    """
    if value is None:
        return None
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        errors.add(field, f"{field} must be an integer, not a decimal")
        return None
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            errors.add(field, f"{field} must be an integer")
            return None
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            errors.add(field, f"{field} must be a plain integer (scientific notation not allowed)")
            return None
        # Reject decimal points (e.g., "12.5")
        if "." in stripped:
            errors.add(field, f"{field} must be an integer (no decimals)")
            return None
        try:
            return int(stripped)
        except ValueError:
            errors.add(field, f"{field} must be an integer")
            return None
    errors.add(field, f"{field} must be an integer")
    return None


def coerce_cents(value: Any, field: str, errors: FieldErrors, *, required: bool = False) -> int | None:
    if value is None:
        if required:
            errors.add(field, f"{field} is required")
        return None
    cents = coerce_int(value, field, errors)
    if cents is None:
        return None
    if cents < 0:
        errors.add(field, f"{field} must be >= 0")
        return None
    if cents > MAX_PRICE_CENTS:
        errors.add(field, f"{field} cannot exceed {MAX_PRICE_CENTS}")
        return None
    return cents


def coerce_quantity(value: Any, field: str, errors: FieldErrors) -> int | None:
    if value is None:
        errors.add(field, f"{field} is required")
        return None
    qty = coerce_int(value, field, errors)
    if qty is None:
        return None
    if qty <= 0:
        errors.add(field, f"{field} must be > 0")
        return None
    if qty > MAX_QUANTITY:
        errors.add(field, f"{field} cannot exceed {MAX_QUANTITY}")
        return None
    return qty


def coerce_date(value: Any, field: str, errors: FieldErrors) -> date | None:
    if value is None or value == "":
        return None
    try:
        return parse_iso_date(value)
    except (TypeError, ValueError):
        errors.add(field, f"{field} must be an ISO-8601 date")
        return None


def coerce_text(value: Any, field: str, errors: FieldErrors, *, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if max_length and len(text) > max_length:
        errors.add(field, f"{field} exceeds max length {max_length}")
        return None
    return text
