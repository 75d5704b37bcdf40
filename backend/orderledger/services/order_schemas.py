from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from ..models.orders import LINE_KINDS, ORDER_STATUSES
from ..time_utils import parse_iso_datetime
from ..validation import (
    FieldErrors,
    coerce_cents,
    coerce_date,
    coerce_int,
    coerce_quantity,
    coerce_text,
)


@dataclass(frozen=True)
class OrderContext:
    """
    Tenant context for every lifecycle call.

    Resolved by the authentication layer; trusted as-is here.
    """
    org_id: int
    actor_user_id: int | None = None


@dataclass
class LineRequest:
    description: str
    quantity: int
    unit_price_cents: int
    product_id: int | None = None
    kind: str | None = None

    @property
    def subtotal_cents(self) -> int:
        return self.quantity * self.unit_price_cents


# New orders start as a quote or go straight to a sale
CREATABLE_STATUSES = ("QUOTE", "SOLD")


@dataclass
class CreateOrderRequest:
    client_id: int
    lines: list[LineRequest]
    status: str = "QUOTE"
    number: int | None = None
    salesperson_id: int | None = None
    quote_valid_until: date | None = None
    delivery_date: date | None = None
    shipping_fee_cents: int = 0
    notes: str | None = None
    invoice_notes: str | None = None

    @classmethod
    def from_dict(cls, payload: Any) -> "CreateOrderRequest":
        errors = FieldErrors()
        if not isinstance(payload, dict):
            errors.add("payload", "Invalid JSON payload")
            errors.raise_if_any()

        client_id = coerce_int(payload.get("client_id"), "client_id", errors)
        if client_id is None and "client_id" not in errors.errors:
            errors.add("client_id", "client_id is required")

        status = _parse_status(payload.get("status", "QUOTE"), errors)
        if status is not None and status not in CREATABLE_STATUSES:
            errors.add("status", "a new order must be QUOTE or SOLD")
            status = None
        number = _parse_number(payload.get("number"), errors)
        lines = _parse_lines(payload.get("lines"), errors, required=True)

        req = cls(
            client_id=client_id,
            lines=lines or [],
            status=status or "QUOTE",
            number=number,
            salesperson_id=coerce_int(payload.get("salesperson_id"), "salesperson_id", errors),
            quote_valid_until=coerce_date(payload.get("quote_valid_until"), "quote_valid_until", errors),
            delivery_date=coerce_date(payload.get("delivery_date"), "delivery_date", errors),
            shipping_fee_cents=coerce_cents(payload.get("shipping_fee_cents"), "shipping_fee_cents", errors) or 0,
            notes=coerce_text(payload.get("notes"), "notes", errors),
            invoice_notes=coerce_text(payload.get("invoice_notes"), "invoice_notes", errors),
        )
        errors.raise_if_any()
        return req


# Header fields an update may carry; absent keys leave the order untouched
UPDATABLE_FIELDS = (
    "number",
    "client_id",
    "status",
    "quote_valid_until",
    "delivery_date",
    "shipping_fee_cents",
    "notes",
    "invoice_notes",
    "lines",
)


@dataclass
class UpdateOrderRequest:
    number: int | None = None
    client_id: int | None = None
    status: str | None = None
    quote_valid_until: date | None = None
    delivery_date: date | None = None
    shipping_fee_cents: int | None = None
    notes: str | None = None
    invoice_notes: str | None = None
    lines: list[LineRequest] | None = None
    provided: frozenset = field(default_factory=frozenset)

    def has(self, name: str) -> bool:
        return name in self.provided

    @classmethod
    def from_dict(cls, payload: Any) -> "UpdateOrderRequest":
        errors = FieldErrors()
        if not isinstance(payload, dict):
            errors.add("payload", "Invalid JSON payload")
            errors.raise_if_any()

        for key in payload:
            if key not in UPDATABLE_FIELDS:
                errors.add(key, f"Field not allowed: {key}")

        provided = frozenset(k for k in payload if k in UPDATABLE_FIELDS)
        req = cls(provided=provided)

        if "number" in payload:
            req.number = _parse_number(payload["number"], errors)
            if req.number is None and "number" not in errors.errors:
                errors.add("number", "number cannot be null")
        if "client_id" in payload:
            req.client_id = coerce_int(payload["client_id"], "client_id", errors)
            if req.client_id is None and "client_id" not in errors.errors:
                errors.add("client_id", "client_id cannot be null")
        if "status" in payload:
            req.status = _parse_status(payload["status"], errors)
        if "quote_valid_until" in payload:
            req.quote_valid_until = coerce_date(payload["quote_valid_until"], "quote_valid_until", errors)
        if "delivery_date" in payload:
            req.delivery_date = coerce_date(payload["delivery_date"], "delivery_date", errors)
        if "shipping_fee_cents" in payload:
            req.shipping_fee_cents = coerce_cents(payload["shipping_fee_cents"], "shipping_fee_cents", errors) or 0
        if "notes" in payload:
            req.notes = coerce_text(payload["notes"], "notes", errors)
        if "invoice_notes" in payload:
            req.invoice_notes = coerce_text(payload["invoice_notes"], "invoice_notes", errors)
        if "lines" in payload:
            req.lines = _parse_lines(payload["lines"], errors, required=True)

        errors.raise_if_any()
        return req


@dataclass
class OrderFilters:
    status: str | None = None
    salesperson_id: int | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None

    @classmethod
    def from_args(cls, args: Any) -> "OrderFilters":
        errors = FieldErrors()
        status = args.get("status") or None
        if status is not None:
            status = _parse_status(status, errors)
        filters = cls(
            status=status,
            salesperson_id=coerce_int(args.get("salesperson_id") or None, "salesperson_id", errors),
            date_from=_parse_datetime(args.get("date_from"), "date_from", errors),
            date_to=_parse_datetime(args.get("date_to"), "date_to", errors),
        )
        errors.raise_if_any("Invalid filters")
        return filters


def _parse_status(value: Any, errors: FieldErrors) -> str | None:
    if value is None:
        errors.add("status", "status cannot be null")
        return None
    status = str(value).strip().upper()
    if status not in ORDER_STATUSES:
        errors.add("status", f"status must be one of {', '.join(ORDER_STATUSES)}")
        return None
    return status


def _parse_number(value: Any, errors: FieldErrors) -> int | None:
    if value is None:
        return None
    number = coerce_int(value, "number", errors)
    if number is not None and number <= 0:
        errors.add("number", "number must be a positive integer")
        return None
    return number


def _parse_datetime(value: Any, field_name: str, errors: FieldErrors) -> datetime | None:
    if value in (None, ""):
        return None
    try:
        return parse_iso_datetime(str(value))
    except ValueError:
        errors.add(field_name, f"{field_name} must be an ISO-8601 datetime")
        return None


def _parse_lines(value: Any, errors: FieldErrors, *, required: bool) -> list[LineRequest] | None:
    if value is None:
        if required:
            errors.add("lines", "The order must have at least one line")
        return None
    if not isinstance(value, list):
        errors.add("lines", "lines must be a list")
        return None
    if not value:
        errors.add("lines", "The order must have at least one line")
        return None

    lines: list[LineRequest] = []
    for i, raw in enumerate(value):
        prefix = f"lines[{i}]"
        if not isinstance(raw, dict):
            errors.add(prefix, "line must be an object")
            continue

        description = coerce_text(raw.get("description"), f"{prefix}.description", errors, max_length=255)
        if not description:
            errors.add(f"{prefix}.description", "description is required")

        quantity = coerce_quantity(raw.get("quantity"), f"{prefix}.quantity", errors)
        unit_price = coerce_cents(raw.get("unit_price_cents"), f"{prefix}.unit_price_cents", errors, required=True)
        product_id = coerce_int(raw.get("product_id"), f"{prefix}.product_id", errors)

        kind = raw.get("kind")
        if kind is not None:
            kind = str(kind).strip().upper()
            if kind not in LINE_KINDS:
                errors.add(f"{prefix}.kind", f"kind must be one of {', '.join(LINE_KINDS)}")
                kind = None

        if description and quantity is not None and unit_price is not None:
            lines.append(LineRequest(
                description=description,
                quantity=quantity,
                unit_price_cents=unit_price,
                product_id=product_id,
                kind=kind,
            ))
    return lines
