"""
DocumentWriter -- persists documents with a freshly allocated number.

Responsibility:
    Turns a DocumentDraft into ``documents`` / ``document_line_items`` rows:
    allocates the number, computes MonetaryTotals from the items, and
    inserts everything inside the caller's transaction.  Also rewrites the
    items of an existing document (full recomputation), changes status and
    deletes documents.

Architecture position:
    Kernel > Services.  Called by DocumentOrchestrator, which owns the
    transaction.

Invariants enforced:
    - Number and totals are written in the same flush as the items they
      describe; nothing is persisted with stale totals.
    - UNIQUE(document_type, document_number) is checked by the database.
      When an insert collides (a legacy number the counter did not know
      about), the insert savepoint is rolled back, the counter increment is
      kept, and a new number is allocated -- up to
      ``allocation_max_attempts`` times.
    - At most one invoice per estimate is checked by the partial unique
      index at insert time, inside the same transaction; there is no
      separate existence check that a concurrent request could slip past.

Failure modes:
    - AllocationConflictError: every attempt collided.
    - DerivationConflictError: the source estimate already has an invoice.
    - UnsupportedTaxRateError: under the ``reject`` policy only.
    - ValidationError: the computed total exceeds the amount column.
    - Any other IntegrityError propagates unchanged.
"""

from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billing_config.schema import BillingConfig
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.numbering import period_prefix
from billing_kernel.domain.tax import calculate_amounts
from billing_kernel.domain.validation import check_totals
from billing_kernel.domain.values import (
    CallPath,
    DocumentDraft,
    DocumentType,
    LineItem,
    MonetaryTotals,
    TaxConfiguration,
)
from billing_kernel.exceptions import (
    AllocationConflictError,
    DerivationConflictError,
    InvalidStatusTransitionError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.document import Document, DocumentLineItem
from billing_kernel.selectors.document_selector import DocumentSelector
from billing_kernel.services.base import BaseService
from billing_kernel.services.sequence_allocator import SequenceAllocator

logger = get_logger("services.document_writer")


class DocumentWriter(BaseService[Document]):
    """
    Writes documents and their items.

    Non-goals:
        - Does NOT commit; the orchestrator does.
        - Does NOT parse request payloads (see ``domain.validation``).
    """

    def __init__(
        self,
        session: Session,
        config: BillingConfig,
        clock: Clock | None = None,
        allocator: SequenceAllocator | None = None,
        selector: DocumentSelector | None = None,
    ):
        super().__init__(session)
        self._config = config
        self._clock = clock or SystemClock()
        self._selector = selector or DocumentSelector(session)
        self._allocator = allocator or SequenceAllocator(session, self._selector)

    def compute_totals(
        self,
        items: Sequence[LineItem],
        tax_configuration: TaxConfiguration,
    ) -> MonetaryTotals:
        """Run the amount calculator under the configured rate policy."""
        result = calculate_amounts(
            items, tax_configuration, self._config.unsupported_rate_policy
        )
        for index in result.excluded_item_indices:
            logger.warning(
                "unsupported_tax_rate_excluded",
                extra={
                    "item_index": index,
                    "tax_rate": str(items[index].tax_rate),
                    "amount": str(items[index].resolved_amount),
                },
            )
        check_totals(result.totals)
        return result.totals

    def insert(
        self,
        draft: DocumentDraft,
        call_path: CallPath,
        actor_id: UUID,
    ) -> Document:
        """
        Insert ``draft`` under a newly allocated number.

        Args:
            draft: Header, tax settings and items of the new document.
            call_path: Selects the number layout from configuration.
            actor_id: Recorded as ``created_by_id``.

        Returns:
            The flushed Document.

        Raises:
            AllocationConflictError: Every allocation attempt collided.
            DerivationConflictError: Second invoice for one estimate.
        """
        totals = self.compute_totals(draft.items, draft.tax_configuration)
        rule = self._config.numbering.rule_for(draft.document_type, call_path)
        reference = self._clock.now()
        max_attempts = self._config.allocation_max_attempts

        for attempt in range(1, max_attempts + 1):
            number = self._allocator.allocate(draft.document_type, reference, rule)
            document = _build_document(draft, number.formatted, totals, actor_id)

            savepoint = self.session.begin_nested()
            try:
                self.session.add(document)
                self.session.flush()
                savepoint.commit()
            except IntegrityError:
                savepoint.rollback()
                self._classify_insert_failure(draft, number.formatted, attempt)
                continue

            logger.info(
                "document_inserted",
                extra={
                    "document_id": str(document.id),
                    "document_type": draft.document_type.value,
                    "document_number": number.formatted,
                    "call_path": call_path.value,
                    "attempt": attempt,
                    "item_count": len(draft.items),
                    "total_amount": str(totals.total_amount),
                },
            )
            return document

        raise AllocationConflictError(
            draft.document_type.value,
            period_prefix(rule, reference),
            max_attempts,
        )

    def _classify_insert_failure(
        self, draft: DocumentDraft, document_number: str, attempt: int
    ) -> None:
        """Decide whether a failed insert is retried, reported, or re-raised.

        Must be called from inside the ``except IntegrityError`` block.
        """
        if self._selector.number_exists(draft.document_type, document_number):
            logger.warning(
                "document_number_collision_retry",
                extra={
                    "document_type": draft.document_type.value,
                    "document_number": document_number,
                    "attempt": attempt,
                },
            )
            return

        if (
            draft.document_type is DocumentType.INVOICE
            and draft.source_document_id is not None
            and self._selector.derived_from(draft.source_document_id, DocumentType.INVOICE)
        ):
            raise DerivationConflictError(
                str(draft.source_document_id), DocumentType.INVOICE.value
            ) from None

        raise

    def replace_items(
        self,
        document: Document,
        items: Sequence[LineItem],
        actor_id: UUID,
        tax_configuration: TaxConfiguration | None = None,
    ) -> Document:
        """
        Replace every item of ``document`` and recompute its totals.

        The number is untouched.  Old items are deleted in their own flush
        so the new rows can reuse their display orders.
        """
        config = tax_configuration or document.tax_configuration
        totals = self.compute_totals(items, config)

        document.items.clear()
        self.session.flush()

        document.items.extend(DocumentLineItem.from_line_item(item) for item in items)
        document.tax_type = config.tax_type
        document.tax_rate = config.tax_rate
        document.rounding_type = config.rounding_type
        document.apply_totals(totals)
        document.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "document_items_replaced",
            extra={
                "document_id": str(document.id),
                "document_number": document.document_number,
                "item_count": len(items),
                "total_amount": str(totals.total_amount),
            },
        )
        return document

    def set_status(self, document: Document, status: str, actor_id: UUID) -> Document:
        """
        Move ``document`` to ``status``.

        Any status in the type's vocabulary may be set.  Marking an invoice
        ``paid`` stamps ``paid_date`` with today's date.

        Raises:
            InvalidStatusTransitionError: ``status`` is not in the vocabulary.
        """
        defaults = self._config.defaults_for(document.document_type)
        if status not in defaults.statuses:
            raise InvalidStatusTransitionError(document.document_type.value, status)

        previous = document.status
        document.status = status
        if document.document_type is DocumentType.INVOICE and status == "paid":
            document.paid_date = self._clock.today()
        document.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "document_status_changed",
            extra={
                "document_id": str(document.id),
                "document_number": document.document_number,
                "from_status": previous,
                "to_status": status,
            },
        )
        return document

    def delete(self, document: Document) -> None:
        """Delete ``document`` and its items.  Its number is never reissued."""
        document_id = str(document.id)
        document_number = document.document_number
        self.session.delete(document)
        self.session.flush()
        logger.info(
            "document_deleted",
            extra={"document_id": document_id, "document_number": document_number},
        )


def _build_document(
    draft: DocumentDraft,
    document_number: str,
    totals: MonetaryTotals,
    actor_id: UUID,
) -> Document:
    config = draft.tax_configuration
    document = Document(
        document_type=draft.document_type,
        document_number=document_number,
        status=draft.status,
        counterparty_id=draft.counterparty_id,
        honorific=draft.honorific,
        subject=draft.subject,
        issue_date=draft.issue_date,
        valid_until=draft.valid_until,
        due_date=draft.due_date,
        delivery_date=draft.delivery_date,
        delivery_location=draft.delivery_location,
        payment_terms=draft.payment_terms,
        tax_type=config.tax_type,
        tax_rate=Decimal(config.tax_rate),
        rounding_type=config.rounding_type,
        remarks=draft.remarks,
        source_document_id=draft.source_document_id,
        created_by_id=actor_id,
        items=[DocumentLineItem.from_line_item(item) for item in draft.items],
    )
    document.apply_totals(totals)
    return document
