"""ORM models.  Importing this package registers every table on Base.metadata."""

from billing_kernel.models.document import Document, DocumentLineItem
from billing_kernel.models.sequence_counter import DocumentSequenceCounter

__all__ = [
    "Document",
    "DocumentLineItem",
    "DocumentSequenceCounter",
]
