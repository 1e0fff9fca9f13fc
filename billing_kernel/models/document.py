"""
Document and DocumentLineItem -- the persisted business documents.

Responsibility:
    One ``documents`` row per estimate, purchase order, order confirmation,
    delivery note or invoice, with its tax settings and MonetaryTotals
    snapshot, and an ordered set of ``document_line_items``.

Architecture position:
    Kernel > Models.  Imported by selectors/ and services/.

Invariants enforced (database level):
    - UNIQUE(document_type, document_number): a number is never issued twice
      within a type.  The document writer retries allocation on collision.
    - At most one invoice per source estimate: partial unique index on
      source_document_id WHERE document_type = 'invoice', checked by the
      database inside the inserting transaction.
    - UNIQUE(document_id, display_order): stable item ordering.
    - Items cascade-delete with their document (FK ON DELETE CASCADE plus
      ORM delete-orphan).
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, Enum, ForeignKey, Index, Integer, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import Base, ExactDecimal, TrackedBase, UUIDString
from billing_kernel.domain.values import (
    DocumentTaxType,
    DocumentType,
    ItemTaxType,
    LineItem,
    MonetaryTotals,
    RoundingType,
    TaxConfiguration,
)


def _enum_column(enum_type, length: int) -> Enum:
    return Enum(
        enum_type,
        native_enum=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class Document(TrackedBase):
    """
    Document header.

    Contract:
        The number, once flushed, is never changed.  MonetaryTotals columns
        are always written together from one AmountCalculator result.
    """

    __tablename__ = "documents"

    __table_args__ = (
        UniqueConstraint("document_type", "document_number", name="uq_documents_type_number"),
        Index(
            "uq_documents_invoice_per_estimate",
            "source_document_id",
            unique=True,
            postgresql_where=text("document_type = 'invoice'"),
            sqlite_where=text("document_type = 'invoice'"),
        ),
        Index("idx_documents_type_number", "document_type", "document_number"),
        Index("idx_documents_status", "status"),
    )

    document_type: Mapped[DocumentType] = mapped_column(
        _enum_column(DocumentType, 30),
        nullable=False,
    )

    document_number: Mapped[str] = mapped_column(String(30), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")

    # Customer or supplier, owned by the customer master
    counterparty_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    honorific: Mapped[str | None] = mapped_column(String(20), nullable=True)

    subject: Mapped[str] = mapped_column(String(500), nullable=False)

    issue_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    valid_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    paid_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    delivery_location: Mapped[str | None] = mapped_column(String(500), nullable=True)
    payment_terms: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Tax configuration
    tax_type: Mapped[DocumentTaxType] = mapped_column(
        _enum_column(DocumentTaxType, 20),
        nullable=False,
    )
    tax_rate: Mapped[Decimal] = mapped_column(ExactDecimal(5, 2), nullable=False)
    rounding_type: Mapped[RoundingType] = mapped_column(
        _enum_column(RoundingType, 10),
        nullable=False,
    )

    # MonetaryTotals snapshot
    subtotal: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    tax_amount_8: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    tax_amount_10: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    remarks: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    # Estimate this document was derived from
    source_document_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("documents.id", ondelete="SET NULL"),
        nullable=True,
    )

    items: Mapped[list["DocumentLineItem"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DocumentLineItem.display_order",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Document {self.document_type.value} {self.document_number}>"

    @property
    def tax_configuration(self) -> TaxConfiguration:
        return TaxConfiguration(
            tax_type=self.tax_type,
            tax_rate=self.tax_rate,
            rounding_type=self.rounding_type,
        )

    @property
    def totals(self) -> MonetaryTotals:
        return MonetaryTotals(
            subtotal=self.subtotal,
            tax_amount=self.tax_amount,
            tax_amount_8=self.tax_amount_8,
            tax_amount_10=self.tax_amount_10,
            total_amount=self.total_amount,
        )

    def apply_totals(self, totals: MonetaryTotals) -> None:
        self.subtotal = totals.subtotal
        self.tax_amount = totals.tax_amount
        self.tax_amount_8 = totals.tax_amount_8
        self.tax_amount_10 = totals.tax_amount_10
        self.total_amount = totals.total_amount

    def line_items(self) -> list[LineItem]:
        """Items as domain values, in display order."""
        return [item.to_line_item() for item in sorted(self.items, key=lambda i: i.display_order)]


class DocumentLineItem(Base):
    """One row on a document.  ``amount`` is stored resolved."""

    __tablename__ = "document_line_items"

    __table_args__ = (
        UniqueConstraint("document_id", "display_order", name="uq_line_items_display_order"),
    )

    document_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit: Mapped[str | None] = mapped_column(String(20), nullable=True)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    tax_type: Mapped[ItemTaxType] = mapped_column(
        _enum_column(ItemTaxType, 20),
        nullable=False,
    )
    tax_rate: Mapped[Decimal] = mapped_column(ExactDecimal(5, 2), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    remarks: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False)

    document: Mapped[Document] = relationship(back_populates="items")

    def __repr__(self) -> str:
        return f"<DocumentLineItem {self.display_order} {self.name} {self.amount}>"

    @classmethod
    def from_line_item(cls, item: LineItem) -> "DocumentLineItem":
        return cls(
            name=item.name,
            quantity=item.quantity,
            unit=item.unit,
            unit_price=item.unit_price,
            tax_type=item.tax_type,
            tax_rate=item.tax_rate,
            amount=item.resolved_amount,
            remarks=item.remarks,
            display_order=item.display_order,
        )

    def to_line_item(self) -> LineItem:
        return LineItem(
            name=self.name,
            quantity=self.quantity,
            unit_price=self.unit_price,
            tax_type=self.tax_type,
            tax_rate=self.tax_rate,
            display_order=self.display_order,
            amount=self.amount,
            unit=self.unit,
            remarks=self.remarks,
        )
