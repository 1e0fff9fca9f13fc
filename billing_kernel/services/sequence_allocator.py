"""
SequenceAllocator -- per-type, per-period document numbers via locked counters.

Responsibility:
    Issues the next DocumentNumber for a (document type, period) pair.  The
    period is the rule's prefix for the reference month: ``2024-03`` for the
    monthly layout, ``INV-202403`` for the prefixed one, so every layout has
    its own counter space.

Architecture position:
    Kernel > Services.  Called by DocumentWriter inside the request
    transaction.

Invariants enforced:
    - Monotonic and unique: the locked counter row is the only source of
      the next value.  Counting existing documents is used exactly once,
      to seed a counter that has never been used, so numbers already
      issued under the old count-based scheme are not reissued.
    - Deleting a document never lowers a counter, so a freed number is
      never handed out again.
    - Transactional: the increment is visible only after the caller
      commits; a rollback returns the value.

Failure modes:
    - IntegrityError on concurrent first use of a counter: handled with a
      savepoint rollback and a locked re-read.

Concurrency:
    PostgreSQL: ``SELECT ... FOR UPDATE`` on the counter row serializes
    allocations for one key while other keys proceed.
    SQLite: every transaction starts with ``BEGIN IMMEDIATE`` (see
    ``billing_kernel.db.engine``), which serializes writers database-wide.
"""

from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from billing_kernel.domain.numbering import NumberingRule, build_document_number, period_prefix
from billing_kernel.domain.values import DocumentNumber, DocumentType
from billing_kernel.logging_config import get_logger
from billing_kernel.models.sequence_counter import DocumentSequenceCounter
from billing_kernel.selectors.document_selector import DocumentSelector
from billing_kernel.services.base import BaseService

logger = get_logger("services.sequence")


class SequenceAllocator(BaseService[DocumentSequenceCounter]):
    """
    Allocates document numbers.

    Contract:
        ``allocate(document_type, reference_date)`` returns a DocumentNumber
        whose sequence is strictly greater than every sequence previously
        issued for the same type and period key.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT check the documents table for collisions; the unique
          constraint on ``documents`` does that at insert time.

    Usage:
        number = allocator.allocate(DocumentType.ESTIMATE, clock.now())
        str(number)  # "2024-03-001"
    """

    def __init__(self, session, selector: DocumentSelector | None = None):
        super().__init__(session)
        self._selector = selector or DocumentSelector(session)

    def allocate(
        self,
        document_type: DocumentType,
        reference_date: date | datetime,
        rule: NumberingRule | None = None,
    ) -> DocumentNumber:
        """
        Issue the next number for ``document_type`` in the month of
        ``reference_date``.

        Args:
            document_type: Type whose counter is advanced.
            reference_date: Local wall-clock time of the request.
            rule: Number layout; defaults to the monthly layout.

        Returns:
            The allocated DocumentNumber.
        """
        rule = rule or NumberingRule()
        key = period_prefix(rule, reference_date)
        sequence = self.next_value(document_type, key)
        number = build_document_number(document_type, rule, reference_date, sequence)
        logger.info(
            "sequence_allocated",
            extra={
                "document_type": document_type.value,
                "period_key": key,
                "sequence": sequence,
                "document_number": number.formatted,
            },
        )
        return number

    def next_value(self, document_type: DocumentType, period_key: str) -> int:
        """
        Advance the counter for (document_type, period_key) and return it.

        Postconditions:
            - Returns an integer > 0.
            - The counter row stays locked until the transaction ends.
        """
        counter = self._locked_counter(document_type, period_key)

        if counter is None:
            # First use of this key; another transaction may be creating it too
            savepoint = self.session.begin_nested()
            try:
                seed = self._selector.count_with_prefix(document_type, period_key)
                counter = DocumentSequenceCounter(
                    document_type=document_type,
                    period_key=period_key,
                    last_value=seed + 1,
                )
                self.session.add(counter)
                self.session.flush()
                savepoint.commit()
                logger.info(
                    "sequence_counter_seeded",
                    extra={
                        "document_type": document_type.value,
                        "period_key": period_key,
                        "seed": seed,
                    },
                )
                return counter.last_value
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={
                        "document_type": document_type.value,
                        "period_key": period_key,
                    },
                )
                savepoint.rollback()
                counter = self._locked_counter(document_type, period_key)
                if counter is None:
                    raise

        counter.last_value += 1
        self.session.flush()
        return counter.last_value

    def current_value(self, document_type: DocumentType, period_key: str) -> int | None:
        """Last issued value for the key, or None if the counter was never used."""
        counter = self.session.execute(
            select(DocumentSequenceCounter)
            .where(DocumentSequenceCounter.document_type == document_type)
            .where(DocumentSequenceCounter.period_key == period_key)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return counter.last_value if counter else None

    def reset(self, document_type: DocumentType, period_key: str, value: int = 0) -> None:
        """
        Force a counter to ``value``.

        WARNING: For tests and data migrations only.  Lowering a counter in
        production reissues numbers.
        """
        counter = self._locked_counter(document_type, period_key)
        if counter is None:
            counter = DocumentSequenceCounter(
                document_type=document_type,
                period_key=period_key,
                last_value=value,
            )
            self.session.add(counter)
        else:
            counter.last_value = value
        self.session.flush()

    def _locked_counter(
        self, document_type: DocumentType, period_key: str
    ) -> DocumentSequenceCounter | None:
        return self.session.execute(
            select(DocumentSequenceCounter)
            .where(DocumentSequenceCounter.document_type == document_type)
            .where(DocumentSequenceCounter.period_key == period_key)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
