"""
Value objects shared by the pure domain layer.

Responsibility:
    Immutable representations of line items, tax settings, computed totals and
    allocated document numbers.  Nothing here touches the database.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Every monetary and quantity field is a Decimal.
    - ``LineItem.resolved_amount`` is the supplied amount when present,
      otherwise ``quantity * unit_price``.  A supplied amount is trusted
      as-is and never reconciled against quantity and price.
    - ``DocumentNumber`` is allocated once and never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from billing_kernel.db.types import DECIMAL_CONTEXT


class DocumentType(str, Enum):
    """The five business document types sharing one numbering engine."""

    ESTIMATE = "estimate"
    PURCHASE_ORDER = "purchase_order"
    ORDER_CONFIRMATION = "order_confirmation"
    DELIVERY_NOTE = "delivery_note"
    INVOICE = "invoice"

    @property
    def number_field(self) -> str:
        """Name of the number field in the JSON payload for this type."""
        return _NUMBER_FIELDS[self]

    @property
    def counterparty_field(self) -> str:
        """Purchase-side documents name their counterparty a supplier."""
        if self in (DocumentType.PURCHASE_ORDER, DocumentType.ORDER_CONFIRMATION):
            return "supplierId"
        return "customerId"


_NUMBER_FIELDS: dict[DocumentType, str] = {
    DocumentType.ESTIMATE: "estimateNumber",
    DocumentType.PURCHASE_ORDER: "orderNumber",
    DocumentType.ORDER_CONFIRMATION: "confirmationNumber",
    DocumentType.DELIVERY_NOTE: "deliveryNoteNumber",
    DocumentType.INVOICE: "invoiceNumber",
}


class ItemTaxType(str, Enum):
    """Per-line tax treatment."""

    TAXABLE = "taxable"
    NON_TAXABLE = "non-taxable"
    TAX_INCLUDED = "tax-included"


class DocumentTaxType(str, Enum):
    """Whether document prices are quoted with or without tax."""

    INCLUSIVE = "inclusive"
    EXCLUSIVE = "exclusive"


class RoundingType(str, Enum):
    """Fractional tax rounding rule chosen per document."""

    FLOOR = "floor"
    CEIL = "ceil"
    ROUND = "round"


class NumberFormat(str, Enum):
    """Document number layouts found in stored data.

    MONTHLY:  ``YYYY-MM-NNN``
    PREFIXED: ``PREFIX-YYYYMM-NNNN`` (invoice / purchase order from estimate)
    """

    MONTHLY = "monthly"
    PREFIXED = "prefixed"


class CallPath(str, Enum):
    """The operation that triggers a number allocation."""

    CREATE = "create"
    DUPLICATE = "duplicate"
    FROM_ESTIMATE = "from_estimate"


@dataclass(frozen=True)
class LineItem:
    """One billable row on a document."""

    name: str
    quantity: Decimal
    unit_price: Decimal
    tax_type: ItemTaxType
    tax_rate: Decimal
    display_order: int
    amount: Decimal | None = None
    unit: str | None = None
    remarks: str | None = None

    @property
    def resolved_amount(self) -> Decimal:
        if self.amount is not None:
            return self.amount
        return DECIMAL_CONTEXT.multiply(self.quantity, self.unit_price)

    def with_tax_rate(self, tax_rate: Decimal) -> LineItem:
        return replace(self, tax_rate=tax_rate)


@dataclass(frozen=True)
class TaxConfiguration:
    """Document-level tax settings."""

    tax_type: DocumentTaxType = DocumentTaxType.EXCLUSIVE
    tax_rate: Decimal = Decimal("10")
    rounding_type: RoundingType = RoundingType.FLOOR


@dataclass(frozen=True)
class MonetaryTotals:
    """The persisted monetary snapshot of a document."""

    subtotal: Decimal
    tax_amount: Decimal
    tax_amount_8: Decimal
    tax_amount_10: Decimal
    total_amount: Decimal

    @classmethod
    def zero(cls) -> MonetaryTotals:
        return cls(
            subtotal=Decimal("0"),
            tax_amount=Decimal("0"),
            tax_amount_8=Decimal("0"),
            tax_amount_10=Decimal("0"),
            total_amount=Decimal("0"),
        )


@dataclass(frozen=True)
class DocumentNumber:
    """An allocated document number."""

    document_type: DocumentType
    year_month: str
    sequence: int
    formatted: str
    number_format: NumberFormat = NumberFormat.MONTHLY

    def __str__(self) -> str:
        return self.formatted


@dataclass(frozen=True)
class CalculationResult:
    """MonetaryTotals plus the indices of items left out of every tax bucket."""

    totals: MonetaryTotals
    excluded_item_indices: tuple[int, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class DocumentDraft:
    """Everything needed to insert a document except its number and totals.

    Built by DocumentDerivationEngine for create, duplicate and derive; the
    writer allocates the number and computes totals at insert time.
    """

    document_type: DocumentType
    subject: str
    tax_configuration: TaxConfiguration
    items: tuple[LineItem, ...] = ()
    counterparty_id: str | None = None
    honorific: str | None = None
    issue_date: date | None = None
    valid_until: date | None = None
    due_date: date | None = None
    delivery_date: date | None = None
    delivery_location: str | None = None
    payment_terms: str | None = None
    remarks: str | None = None
    source_document_id: UUID | None = None
    status: str = "draft"
