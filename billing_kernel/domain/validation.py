"""
Payload validation -- raw request dicts to domain values.

Responsibility:
    Parse the camelCase JSON payloads of create / replace-items requests into
    LineItem, TaxConfiguration and DocumentHeader values.  Every problem is
    collected as a FieldError naming the item index and field; one
    ValidationError carrying all of them is raised at the end.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Rules:
    items[i].name          required, non-empty
    items[i].quantity      decimal > 0
    items[i].unitPrice     decimal >= 0
    items[i].taxType       taxable | non-taxable | tax-included
    items[i].taxRate       rate, defaults to the document rate
    items[i].amount        decimal, optional (trusted as supplied)
    items[i].displayOrder  integer >= 0, defaults to the index, unique
    taxType                inclusive | exclusive
    taxRate                rate
    roundingType           floor | ceil | round

    Rates are 0..100 with at most 2 decimal places.  Quantities, prices and
    amounts, supplied or computed as quantity * unitPrice, have at most 9
    decimal places and at most 29 integer digits.  Both limits are the
    storage column limits, so stored values always equal validated ones.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Sequence, TypeVar

from billing_kernel.db.types import DECIMAL_CONTEXT, fits_scale, to_decimal
from billing_kernel.domain.values import (
    DocumentTaxType,
    ItemTaxType,
    LineItem,
    MonetaryTotals,
    RoundingType,
    TaxConfiguration,
)
from billing_kernel.exceptions import FieldError, ValidationError

E = TypeVar("E", bound=Enum)

_MISSING = object()

RATE_PLACES = 2
RATE_LIMIT = Decimal("100")
AMOUNT_PLACES = 9
AMOUNT_INTEGER_DIGITS = 29
_AMOUNT_LIMIT = Decimal(10) ** AMOUNT_INTEGER_DIGITS


@dataclass(frozen=True)
class DocumentHeader:
    """Non-computational document fields supplied by the caller."""

    subject: str
    counterparty_id: str | None = None
    honorific: str | None = None
    issue_date: date | None = None
    valid_until: date | None = None
    due_date: date | None = None
    delivery_date: date | None = None
    delivery_location: str | None = None
    payment_terms: str | None = None
    remarks: str | None = None


class _Collector:
    """Accumulates FieldErrors while parsing."""

    def __init__(self) -> None:
        self.errors: list[FieldError] = []

    def add(self, field: str, message: str, index: int | None = None) -> None:
        self.errors.append(FieldError(field=field, message=message, index=index))

    def decimal(
        self,
        data: Mapping[str, Any],
        field: str,
        index: int | None = None,
        required: bool = True,
    ) -> Decimal | None:
        raw = data.get(field, _MISSING)
        if raw is _MISSING or raw is None or raw == "":
            if required:
                self.add(field, "is required", index)
            return None
        try:
            return to_decimal(raw)
        except ValueError:
            self.add(field, f"is not a valid number: {raw!r}", index)
            return None

    def choice(
        self,
        data: Mapping[str, Any],
        field: str,
        enum_type: type[E],
        index: int | None = None,
        default: E | None = None,
    ) -> E | None:
        raw = data.get(field)
        if raw is None:
            if default is not None:
                return default
            self.add(field, "is required", index)
            return None
        try:
            return enum_type(raw)
        except ValueError:
            allowed = ", ".join(m.value for m in enum_type)
            self.add(field, f"must be one of {allowed}, got {raw!r}", index)
            return None

    def text(
        self,
        data: Mapping[str, Any],
        field: str,
        index: int | None = None,
        required: bool = False,
    ) -> str | None:
        raw = data.get(field)
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            if required:
                self.add(field, "is required", index)
            return None
        if not isinstance(raw, str):
            self.add(field, "must be a string", index)
            return None
        return raw

    def date(self, data: Mapping[str, Any], field: str) -> date | None:
        raw = data.get(field)
        if raw is None or raw == "":
            return None
        if isinstance(raw, date):
            return raw
        if isinstance(raw, str):
            try:
                return date.fromisoformat(raw[:10])
            except ValueError:
                pass
        self.add(field, f"is not a valid date: {raw!r}")
        return None

    def rate(self, field: str, value: Decimal, index: int | None = None) -> bool:
        if value < 0 or value > RATE_LIMIT:
            self.add(field, f"must be between 0 and {RATE_LIMIT}", index)
            return False
        if not fits_scale(value, RATE_PLACES):
            self.add(field, f"must have at most {RATE_PLACES} decimal places", index)
            return False
        return True

    def storable(self, field: str, value: Decimal | None, index: int | None = None) -> None:
        if value is None:
            return
        if abs(value) >= _AMOUNT_LIMIT:
            self.add(field, f"must have at most {AMOUNT_INTEGER_DIGITS} integer digits", index)
        elif not fits_scale(value, AMOUNT_PLACES):
            self.add(field, f"must have at most {AMOUNT_PLACES} decimal places", index)

    def raise_if_any(self) -> None:
        if self.errors:
            raise ValidationError(self.errors)


def parse_tax_configuration(data: Mapping[str, Any]) -> TaxConfiguration:
    """Parse ``taxType`` / ``taxRate`` / ``roundingType``.

    Raises:
        ValidationError: On any missing or malformed field.
    """
    c = _Collector()
    config = _tax_configuration(c, data)
    c.raise_if_any()
    if config is None:
        raise ValidationError([FieldError(field="taxRate", message="is required")])
    return config


def _tax_configuration(c: _Collector, data: Mapping[str, Any]) -> TaxConfiguration | None:
    tax_type = c.choice(data, "taxType", DocumentTaxType)
    tax_rate = c.decimal(data, "taxRate")
    rounding_type = c.choice(data, "roundingType", RoundingType)
    if tax_rate is not None and not c.rate("taxRate", tax_rate):
        tax_rate = None
    if tax_type is None or tax_rate is None or rounding_type is None:
        return None
    return TaxConfiguration(
        tax_type=tax_type,
        tax_rate=tax_rate,
        rounding_type=rounding_type,
    )


def parse_line_items(
    raw_items: Sequence[Mapping[str, Any]] | None,
    default_tax_rate: Decimal,
) -> list[LineItem]:
    """Parse an item list; insertion order is kept.

    Raises:
        ValidationError: Naming every offending item index and field.
    """
    c = _Collector()
    items = _line_items(c, raw_items, default_tax_rate)
    c.raise_if_any()
    return items


def _line_items(
    c: _Collector,
    raw_items: Sequence[Mapping[str, Any]] | None,
    default_tax_rate: Decimal | None,
) -> list[LineItem]:
    if raw_items is None:
        return []
    if not isinstance(raw_items, (list, tuple)):
        c.add("items", "must be a list")
        return []

    items: list[LineItem] = []
    seen_orders: set[int] = set()
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, Mapping):
            c.add("item", "must be an object", index)
            continue

        error_count = len(c.errors)
        name = c.text(raw, "name", index, required=True)
        quantity = c.decimal(raw, "quantity", index)
        unit_price = c.decimal(raw, "unitPrice", index)
        tax_type = c.choice(raw, "taxType", ItemTaxType, index)
        tax_rate = c.decimal(raw, "taxRate", index, required=False)
        amount = c.decimal(raw, "amount", index, required=False)
        unit = c.text(raw, "unit", index)
        remarks = c.text(raw, "remarks", index)

        if quantity is not None and quantity <= 0:
            c.add("quantity", "must be greater than 0", index)
        if unit_price is not None and unit_price < 0:
            c.add("unitPrice", "must be >= 0", index)
        if amount is not None and amount < 0:
            c.add("amount", "must be >= 0", index)
        if tax_rate is not None:
            c.rate("taxRate", tax_rate, index)
        c.storable("quantity", quantity, index)
        c.storable("unitPrice", unit_price, index)
        c.storable("amount", amount, index)
        if amount is None and quantity is not None and unit_price is not None and len(c.errors) == error_count:
            c.storable("amount", DECIMAL_CONTEXT.multiply(quantity, unit_price), index)

        display_order = raw.get("displayOrder", index)
        if display_order is None:
            display_order = index
        if isinstance(display_order, bool) or not isinstance(display_order, int) or display_order < 0:
            c.add("displayOrder", "must be a non-negative integer", index)
        elif display_order in seen_orders:
            c.add("displayOrder", f"duplicates display order {display_order}", index)
        else:
            seen_orders.add(display_order)

        if len(c.errors) > error_count:
            continue

        items.append(
            LineItem(
                name=name,
                quantity=quantity,
                unit_price=unit_price,
                tax_type=tax_type,
                tax_rate=tax_rate if tax_rate is not None else default_tax_rate,
                display_order=display_order,
                amount=amount,
                unit=unit,
                remarks=remarks,
            )
        )
    return items


def parse_document(
    data: Mapping[str, Any],
) -> tuple[DocumentHeader, TaxConfiguration, list[LineItem]]:
    """Parse a full create payload: header, tax settings and items.

    Raises:
        ValidationError: Carrying every field error found in the payload.
    """
    c = _Collector()
    header = DocumentHeader(
        subject=c.text(data, "subject", required=True) or "",
        counterparty_id=c.text(data, "customerId") or c.text(data, "supplierId"),
        honorific=c.text(data, "honorific"),
        issue_date=c.date(data, "issueDate"),
        valid_until=c.date(data, "validUntil"),
        due_date=c.date(data, "dueDate"),
        delivery_date=c.date(data, "deliveryDate"),
        delivery_location=c.text(data, "deliveryLocation"),
        payment_terms=c.text(data, "paymentTerms"),
        remarks=c.text(data, "remarks"),
    )
    config = _tax_configuration(c, data)
    items = _line_items(
        c,
        data.get("items"),
        config.tax_rate if config is not None else None,
    )
    c.raise_if_any()
    if config is None:
        raise ValidationError([FieldError(field="taxRate", message="is required")])
    return header, config, items


def check_totals(totals: MonetaryTotals) -> None:
    """Reject totals that no longer fit the amount columns.

    Each item is bounded on its own; many large items can still sum past
    the limit.
    """
    c = _Collector()
    c.storable("totalAmount", totals.total_amount)
    c.raise_if_any()
