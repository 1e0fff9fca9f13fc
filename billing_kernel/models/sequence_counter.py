"""
DocumentSequenceCounter -- last-issued sequence per (document type, period).

One row per counter space, e.g. (estimate, "2024-03") or
(invoice, "INV-202403").  The row is the sole source of truth for the next
number: it is read under ``SELECT ... FOR UPDATE`` and incremented inside the
transaction that inserts the document.  It is never decremented, so the
number of a deleted document is retired, not reissued.
"""

from sqlalchemy import Enum, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import Base
from billing_kernel.domain.values import DocumentType


class DocumentSequenceCounter(Base):
    """Sequence counter table."""

    __tablename__ = "document_sequence_counters"

    __table_args__ = (
        UniqueConstraint("document_type", "period_key", name="uq_sequence_counter_key"),
    )

    document_type: Mapped[DocumentType] = mapped_column(
        Enum(
            DocumentType,
            native_enum=False,
            length=30,
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
    )

    # Leading part of every number in this counter space
    period_key: Mapped[str] = mapped_column(String(20), nullable=False)

    last_value: Mapped[int] = mapped_column(nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<DocumentSequenceCounter {self.document_type.value}:{self.period_key}={self.last_value}>"
