"""
Document Orchestrator - the operation boundary for every document request.

The Orchestrator ties together:
- Validation: raw camelCase payload -> LineItem / TaxConfiguration
- DocumentDerivationEngine: drafts for create, duplicate and derive
- DocumentWriter: number allocation, totals and persistence
- DocumentSelector: loads and payload rendering

Manages its own transaction boundary.  Each public operation runs in one
transaction that commits on success and rolls back on any failure, so a
failed request leaves no consumed counter value, half-written item list or
orphan invoice behind.  Errors raised below this layer are converted here,
and only here, into a DocumentResult.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping, Sequence
from uuid import UUID
from uuid import uuid4 as _uuid4

from sqlalchemy.orm import Session

from billing_config import get_active_config
from billing_config.schema import BillingConfig
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.validation import parse_document, parse_line_items, parse_tax_configuration
from billing_kernel.domain.values import CallPath, DocumentType
from billing_kernel.exceptions import (
    BillingKernelError,
    FieldError,
    ValidationError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.document import Document
from billing_kernel.selectors.document_selector import DocumentSelector
from billing_kernel.selectors.payload import document_payload
from billing_kernel.services.derivation import DocumentDerivationEngine
from billing_kernel.services.document_writer import DocumentWriter
from billing_kernel.services.sequence_allocator import SequenceAllocator

logger = get_logger("services.document_orchestrator")


class DocumentOperationStatus(str, Enum):
    """Outcome of a document operation."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    FOUND = "found"
    VALIDATION_FAILED = "validation_failed"
    UNSUPPORTED_TAX_RATE = "unsupported_tax_rate"
    ALLOCATION_CONFLICT = "allocation_conflict"
    DERIVATION_CONFLICT = "derivation_conflict"
    NOT_FOUND = "not_found"
    INVALID_DERIVATION = "invalid_derivation"
    INVALID_STATUS = "invalid_status"


_SUCCESS_STATUSES = frozenset(
    {
        DocumentOperationStatus.CREATED,
        DocumentOperationStatus.UPDATED,
        DocumentOperationStatus.DELETED,
        DocumentOperationStatus.FOUND,
    }
)

_ERROR_STATUSES: dict[str, DocumentOperationStatus] = {
    "VALIDATION_ERROR": DocumentOperationStatus.VALIDATION_FAILED,
    "UNSUPPORTED_TAX_RATE": DocumentOperationStatus.UNSUPPORTED_TAX_RATE,
    "ALLOCATION_CONFLICT": DocumentOperationStatus.ALLOCATION_CONFLICT,
    "DERIVATION_CONFLICT": DocumentOperationStatus.DERIVATION_CONFLICT,
    "DOCUMENT_NOT_FOUND": DocumentOperationStatus.NOT_FOUND,
    "INVALID_DERIVATION": DocumentOperationStatus.INVALID_DERIVATION,
    "INVALID_STATUS": DocumentOperationStatus.INVALID_STATUS,
}


@dataclass(frozen=True)
class DocumentResult:
    """Result of a document operation."""

    status: DocumentOperationStatus
    document_id: UUID | None = None
    document_number: str | None = None
    payload: dict[str, Any] | None = None
    message: str | None = None
    error_code: str | None = None
    errors: tuple[FieldError, ...] = field(default_factory=tuple)

    @property
    def is_success(self) -> bool:
        return self.status in _SUCCESS_STATUSES

    @classmethod
    def for_document(
        cls, status: DocumentOperationStatus, document: Document
    ) -> "DocumentResult":
        return cls(
            status=status,
            document_id=document.id,
            document_number=document.document_number,
            payload=document_payload(document),
        )

    @classmethod
    def from_error(cls, error: BillingKernelError) -> "DocumentResult":
        errors: tuple[FieldError, ...] = ()
        if isinstance(error, ValidationError):
            errors = tuple(error.field_errors)
        return cls(
            status=_ERROR_STATUSES.get(error.code, DocumentOperationStatus.VALIDATION_FAILED),
            message=str(error),
            error_code=error.code,
            errors=errors,
        )

    def to_dict(self) -> dict[str, Any]:
        """Response body: the document payload, or the failure reason."""
        if self.is_success:
            return {"success": True, "status": self.status.value, "document": self.payload}
        return {
            "success": False,
            "status": self.status.value,
            "error": self.error_code,
            "message": self.message,
            "details": [e.to_dict() for e in self.errors],
        }


class DocumentOrchestrator:
    """
    Orchestrates every document operation.

    By default each operation commits on success and rolls back on failure.
    Set auto_commit=False to delegate transaction control to the caller
    (for testing or batch scenarios).
    """

    def __init__(
        self,
        session: Session,
        config: BillingConfig | None = None,
        clock: Clock | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._config = config or get_active_config()
        self._clock = clock or SystemClock()
        self._auto_commit = auto_commit

        self._selector = DocumentSelector(session)
        self._allocator = SequenceAllocator(session, self._selector)
        self._writer = DocumentWriter(
            session,
            self._config,
            self._clock,
            allocator=self._allocator,
            selector=self._selector,
        )
        self._engine = DocumentDerivationEngine(self._config, self._clock)

    @property
    def session(self) -> Session:
        return self._session

    @property
    def config(self) -> BillingConfig:
        return self._config

    @property
    def allocator(self) -> SequenceAllocator:
        return self._allocator

    @property
    def selector(self) -> DocumentSelector:
        return self._selector

    # =========================================================================
    # Operations
    # =========================================================================

    def create_document(
        self,
        document_type: DocumentType | str,
        payload: Mapping[str, Any],
        actor_id: UUID,
    ) -> DocumentResult:
        """
        Validate ``payload`` and insert a new document under a fresh number.

        Payload fields are camelCase: ``subject``, ``customerId`` /
        ``supplierId``, ``taxType``, ``taxRate``, ``roundingType``, the
        optional dates and texts, and ``items``.
        """

        def work() -> DocumentResult:
            resolved_type = _document_type(document_type)
            header, tax_configuration, items = parse_document(payload)
            draft = self._engine.new_document(resolved_type, header, tax_configuration, items)
            document = self._writer.insert(draft, CallPath.CREATE, actor_id)
            return DocumentResult.for_document(DocumentOperationStatus.CREATED, document)

        return self._run("create", actor_id, work, document_type=_type_name(document_type))

    def duplicate_document(self, document_id: UUID, actor_id: UUID) -> DocumentResult:
        """Copy a document and its items under a new number of the same type."""

        def work() -> DocumentResult:
            source = self._selector.get_or_raise(document_id)
            draft = self._engine.duplicate(source)
            document = self._writer.insert(draft, CallPath.DUPLICATE, actor_id)
            return DocumentResult.for_document(DocumentOperationStatus.CREATED, document)

        return self._run("duplicate", actor_id, work, document_id=str(document_id))

    def derive_document(
        self,
        source_document_id: UUID,
        target_type: DocumentType | str,
        actor_id: UUID,
    ) -> DocumentResult:
        """Convert an estimate into an invoice, purchase order, order
        confirmation or delivery note."""

        def work() -> DocumentResult:
            resolved_type = _document_type(target_type)
            estimate = self._selector.get_or_raise(source_document_id)
            draft = self._engine.derive(estimate, resolved_type)
            document = self._writer.insert(draft, CallPath.FROM_ESTIMATE, actor_id)
            return DocumentResult.for_document(DocumentOperationStatus.CREATED, document)

        return self._run(
            "derive",
            actor_id,
            work,
            document_type=_type_name(target_type),
            document_id=str(source_document_id),
        )

    def replace_items(
        self,
        document_id: UUID,
        items: Sequence[Mapping[str, Any]],
        actor_id: UUID,
        tax_configuration: Mapping[str, Any] | None = None,
    ) -> DocumentResult:
        """
        Replace a document's items and recompute its totals.

        ``tax_configuration`` optionally carries new ``taxType`` /
        ``taxRate`` / ``roundingType`` values; otherwise the document's
        current settings are used.  The number never changes.
        """

        def work() -> DocumentResult:
            document = self._selector.get_or_raise(document_id)
            config = (
                parse_tax_configuration(tax_configuration)
                if tax_configuration is not None
                else document.tax_configuration
            )
            parsed = parse_line_items(items, config.tax_rate)
            self._writer.replace_items(document, parsed, actor_id, config)
            return DocumentResult.for_document(DocumentOperationStatus.UPDATED, document)

        return self._run("replace_items", actor_id, work, document_id=str(document_id))

    def change_status(self, document_id: UUID, status: str, actor_id: UUID) -> DocumentResult:
        """Set a status from the document type's vocabulary."""

        def work() -> DocumentResult:
            document = self._selector.get_or_raise(document_id)
            self._writer.set_status(document, status, actor_id)
            return DocumentResult.for_document(DocumentOperationStatus.UPDATED, document)

        return self._run("change_status", actor_id, work, document_id=str(document_id))

    def delete_document(self, document_id: UUID, actor_id: UUID) -> DocumentResult:
        """Delete a document and its items.  The number is retired."""

        def work() -> DocumentResult:
            document = self._selector.get_or_raise(document_id)
            number = document.document_number
            self._writer.delete(document)
            return DocumentResult(
                status=DocumentOperationStatus.DELETED,
                document_id=document_id,
                document_number=number,
            )

        return self._run("delete", actor_id, work, document_id=str(document_id))

    def get_document(self, document_id: UUID) -> DocumentResult:
        """Read-only lookup; no transaction is committed."""
        document = self._selector.get(document_id)
        if document is None:
            return DocumentResult(
                status=DocumentOperationStatus.NOT_FOUND,
                document_id=document_id,
                message=f"Document not found: {document_id}",
                error_code="DOCUMENT_NOT_FOUND",
            )
        return DocumentResult.for_document(DocumentOperationStatus.FOUND, document)

    # =========================================================================
    # Transaction boundary
    # =========================================================================

    def _run(
        self,
        operation: str,
        actor_id: UUID,
        work: Callable[[], DocumentResult],
        document_type: str | None = None,
        document_id: str | None = None,
    ) -> DocumentResult:
        with LogContext.bind(
            correlation_id=str(_uuid4()),
            actor_id=str(actor_id),
            operation=operation,
            document_type=document_type,
            document_id=document_id,
        ):
            logger.info("document_operation_started")
            t0 = time.monotonic()

            try:
                result = work()
                if self._auto_commit:
                    self._session.commit()
                    logger.info("transaction_committed")
            except BillingKernelError as exc:
                self._rollback(exc.code)
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                logger.warning(
                    "document_operation_failed",
                    extra={
                        "error_code": exc.code,
                        "error_message": str(exc),
                        "duration_ms": duration_ms,
                    },
                )
                return DocumentResult.from_error(exc)
            except Exception:
                self._rollback("unexpected_error")
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                logger.error(
                    "document_operation_failed",
                    extra={"duration_ms": duration_ms},
                    exc_info=True,
                )
                raise

            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            logger.info(
                "document_operation_completed",
                extra={
                    "status": result.status.value,
                    "document_number": result.document_number,
                    "result_document_id": str(result.document_id) if result.document_id else None,
                    "duration_ms": duration_ms,
                },
            )
            return result

    def _rollback(self, reason: str) -> None:
        if self._auto_commit:
            self._session.rollback()
            logger.info("transaction_rolled_back", extra={"reason": reason})


def _type_name(document_type: DocumentType | str) -> str:
    return document_type.value if isinstance(document_type, DocumentType) else str(document_type)


def _document_type(value: DocumentType | str) -> DocumentType:
    try:
        return DocumentType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in DocumentType)
        raise ValidationError(
            [FieldError(field="documentType", message=f"must be one of {allowed}")]
        ) from None
