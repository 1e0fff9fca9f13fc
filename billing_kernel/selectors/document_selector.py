"""
DocumentSelector -- read access to documents for the numbering engine.

Provides the persistence-side queries the engine consumes: the legacy
"count documents of type T whose number starts with P" query used to seed a
counter that has never been used, plus the lookups the writer needs to
classify a failed insert.
"""

from uuid import UUID

from sqlalchemy import func, select

from billing_kernel.domain.values import DocumentType
from billing_kernel.exceptions import DocumentNotFoundError
from billing_kernel.models.document import Document
from billing_kernel.selectors.base import BaseSelector


class DocumentSelector(BaseSelector[Document]):
    """Read-only document queries."""

    def get(self, document_id: UUID) -> Document | None:
        return self.session.get(Document, document_id)

    def get_or_raise(self, document_id: UUID) -> Document:
        document = self.get(document_id)
        if document is None:
            raise DocumentNotFoundError(str(document_id))
        return document

    def count_with_prefix(self, document_type: DocumentType, prefix: str) -> int:
        """Number of documents of ``document_type`` whose number starts with ``prefix``."""
        return self.session.execute(
            select(func.count())
            .select_from(Document)
            .where(Document.document_type == document_type)
            .where(Document.document_number.startswith(prefix, autoescape=True))
        ).scalar_one()

    def number_exists(self, document_type: DocumentType, document_number: str) -> bool:
        return (
            self.session.execute(
                select(Document.id)
                .where(Document.document_type == document_type)
                .where(Document.document_number == document_number)
            ).first()
            is not None
        )

    def derived_from(
        self, source_document_id: UUID, document_type: DocumentType
    ) -> list[Document]:
        """Documents of ``document_type`` derived from ``source_document_id``."""
        return list(
            self.session.execute(
                select(Document)
                .where(Document.source_document_id == source_document_id)
                .where(Document.document_type == document_type)
                .order_by(Document.document_number)
            ).scalars()
        )
