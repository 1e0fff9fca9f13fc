"""
DocumentDerivationEngine -- builds drafts for create, duplicate and derive.

Responsibility:
    Produces the DocumentDraft for a new document from one of three inputs:
    a validated create payload, an existing document to duplicate, or an
    estimate to derive an invoice / purchase order / order confirmation /
    delivery note from.  Type-specific defaults (dates, remarks, delivery
    terms) come from configuration.

Architecture position:
    Kernel > Services, but pure: no session, no I/O.  The writer persists
    what this engine builds.

Invariants enforced:
    - Status is always reset to ``draft``.
    - Items are copied field-for-field (name, quantity, unit, price, tax
      type, amount, remarks, display order).
    - Duplicates keep the source's tax rates, so their totals equal the
      source's.  Derived documents keep the estimate's tax configuration
      and rounding rule; their items are re-taxed at the target rate (10
      for invoices, else the estimate's document rate) unless the target
      keeps per-item rates (delivery notes).
    - A duplicate never carries ``source_document_id``; only derivations
      link back to their estimate.

Failure modes:
    - InvalidDerivationError: the source is not an estimate, or the target
      type is not an enabled derivation target.
"""

from datetime import date

from billing_config.schema import BillingConfig, DocumentTypeDefaults
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.dates import days_after, end_of_next_month
from billing_kernel.domain.validation import DocumentHeader
from billing_kernel.domain.values import (
    DocumentDraft,
    DocumentType,
    LineItem,
    TaxConfiguration,
)
from billing_kernel.exceptions import InvalidDerivationError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.document import Document

logger = get_logger("services.derivation")

# Delivery notes are dated by their delivery date; they carry no issue date.
_DATED_BY_DELIVERY = frozenset({DocumentType.DELIVERY_NOTE})


class DocumentDerivationEngine:
    """
    Builds DocumentDrafts.

    Contract:
        ``new_document`` applies creation defaults to a parsed payload.
        ``duplicate`` copies any document under today's date.
        ``derive`` converts an estimate into one of the configured targets.
    """

    def __init__(self, config: BillingConfig, clock: Clock | None = None):
        self._config = config
        self._clock = clock or SystemClock()

    def new_document(
        self,
        document_type: DocumentType,
        header: DocumentHeader,
        tax_configuration: TaxConfiguration,
        items: list[LineItem],
    ) -> DocumentDraft:
        """Draft for a document created from its own screen."""
        defaults = self._config.defaults_for(document_type)
        today = self._clock.today()

        issue_date = header.issue_date
        delivery_date = header.delivery_date
        if document_type in _DATED_BY_DELIVERY:
            delivery_date = delivery_date or today
        else:
            issue_date = issue_date or today

        valid_until = header.valid_until
        if valid_until is None and defaults.valid_until_days:
            valid_until = days_after(issue_date or today, defaults.valid_until_days)

        due_date = header.due_date
        if due_date is None and document_type is DocumentType.INVOICE:
            due_date = end_of_next_month(issue_date or today)

        return DocumentDraft(
            document_type=document_type,
            subject=header.subject,
            tax_configuration=tax_configuration,
            items=tuple(items),
            counterparty_id=header.counterparty_id,
            honorific=header.honorific or defaults.default_honorific,
            issue_date=issue_date,
            valid_until=valid_until,
            due_date=due_date,
            delivery_date=delivery_date,
            delivery_location=header.delivery_location,
            payment_terms=header.payment_terms,
            remarks=header.remarks or defaults.default_remarks,
        )

    def duplicate(self, source: Document) -> DocumentDraft:
        """
        Draft copying ``source`` under today's date.

        Estimates get a fresh validity window; other types get the
        configured subject suffix and keep their due / delivery dates.
        """
        document_type = source.document_type
        defaults = self._config.defaults_for(document_type)
        today = self._clock.today()

        issue_date = source.issue_date
        delivery_date = source.delivery_date
        if document_type in _DATED_BY_DELIVERY:
            delivery_date = today
        else:
            issue_date = today

        valid_until = source.valid_until
        if document_type is DocumentType.ESTIMATE and defaults.valid_until_days:
            valid_until = days_after(today, defaults.valid_until_days)

        draft = DocumentDraft(
            document_type=document_type,
            subject=f"{source.subject}{defaults.duplicate_subject_suffix}",
            tax_configuration=source.tax_configuration,
            items=tuple(source.line_items()),
            counterparty_id=source.counterparty_id,
            honorific=source.honorific,
            issue_date=issue_date,
            valid_until=valid_until,
            due_date=source.due_date,
            delivery_date=delivery_date,
            delivery_location=source.delivery_location,
            payment_terms=source.payment_terms,
            remarks=source.remarks,
        )
        logger.debug(
            "document_duplicate_drafted",
            extra={
                "source_document_id": str(source.id),
                "source_document_number": source.document_number,
                "item_count": len(draft.items),
            },
        )
        return draft

    def derive(self, estimate: Document, target_type: DocumentType) -> DocumentDraft:
        """
        Draft of ``target_type`` derived from ``estimate``.

        Raises:
            InvalidDerivationError: Unsupported source or target.
        """
        if estimate.document_type is not DocumentType.ESTIMATE:
            raise InvalidDerivationError(
                estimate.document_type.value,
                target_type.value,
                "only estimates can be converted",
            )
        if target_type not in self._config.derivation.targets:
            raise InvalidDerivationError(
                estimate.document_type.value,
                target_type.value,
                "target type is not enabled",
            )

        defaults = self._config.defaults_for(target_type)
        today = self._clock.today()
        items = self._derived_items(estimate, target_type)

        draft = DocumentDraft(
            document_type=target_type,
            subject=estimate.subject,
            tax_configuration=estimate.tax_configuration,
            items=items,
            counterparty_id=estimate.counterparty_id,
            honorific=estimate.honorific,
            remarks=defaults.derived_remarks or estimate.remarks,
            source_document_id=estimate.id,
            **_derived_dates(target_type, defaults, today),
        )
        logger.debug(
            "document_derivation_drafted",
            extra={
                "source_document_id": str(estimate.id),
                "source_document_number": estimate.document_number,
                "target_type": target_type.value,
                "item_rates": sorted({str(item.tax_rate) for item in items}),
            },
        )
        return draft

    def _derived_items(self, estimate: Document, target_type: DocumentType) -> tuple[LineItem, ...]:
        derivation = self._config.derivation
        items = estimate.line_items()
        if target_type in derivation.keep_item_rates:
            return tuple(items)
        rate = derivation.tax_rate_overrides.get(target_type, estimate.tax_rate)
        if not rate:
            rate = derivation.zero_rate_fallbacks.get(target_type, rate)
        return tuple(item.with_tax_rate(rate) for item in items)


def _derived_dates(
    target_type: DocumentType,
    defaults: DocumentTypeDefaults,
    today: date,
) -> dict:
    if target_type in _DATED_BY_DELIVERY:
        return {"delivery_date": today}

    fields: dict = {"issue_date": today}
    if target_type is DocumentType.INVOICE:
        fields["due_date"] = end_of_next_month(today)
    if defaults.delivery_days:
        fields["delivery_date"] = days_after(today, defaults.delivery_days)
    if defaults.delivery_location:
        fields["delivery_location"] = defaults.delivery_location
    if defaults.payment_terms:
        fields["payment_terms"] = defaults.payment_terms
    return fields
