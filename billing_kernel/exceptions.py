"""
Typed Exception Hierarchy for the Billing Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from BillingKernelError:

    BillingKernelError (base)
    |
    +-- ValidationError
    |   +-- UnsupportedTaxRateError
    |
    +-- AllocationConflictError
    |
    +-- DocumentError
    |   +-- DocumentNotFoundError
    |   +-- DerivationConflictError
    |   +-- InvalidDerivationError
    |   +-- InvalidStatusTransitionError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                   | When Raised
----------------|------------------------|------------------------------------------
Validation      | VALIDATION_ERROR       | Missing / malformed item or tax field
                | UNSUPPORTED_TAX_RATE   | Taxable item rate not 8 or 10 (reject mode)
----------------|------------------------|------------------------------------------
Allocation      | ALLOCATION_CONFLICT    | Number collided on every retry attempt
----------------|------------------------|------------------------------------------
Document        | DOCUMENT_NOT_FOUND     | Document ID doesn't exist
                | DERIVATION_CONFLICT    | Estimate already has a derived invoice
                | INVALID_DERIVATION     | Source/target pair not supported
                | INVALID_STATUS         | Status not valid for the document type
----------------|------------------------|------------------------------------------
Configuration   | CONFIGURATION_ERROR    | YAML configuration failed validation

===============================================================================
HANDLING PATTERNS
===============================================================================

Services raise these; DocumentOrchestrator is the only place that catches
them.  It rolls the transaction back and turns the error into a
DocumentResult so that no partially written number or item row survives.

    except AllocationConflictError as e:
        # transient, the caller may resubmit
        return {"error": e.code, "documentType": e.document_type}

    except DerivationConflictError as e:
        # domain error, never retried
        return {"error": e.code, "estimateId": str(e.source_document_id)}
"""

from dataclasses import dataclass


class BillingKernelError(Exception):
    """
    Base exception for all billing kernel errors.

    All subclasses must have a `code` class attribute for
    machine-readable error identification.
    """

    code: str = "BILLING_KERNEL_ERROR"


@dataclass(frozen=True)
class FieldError:
    """One offending field.  ``index`` is the line item position, or None
    for document-level fields."""

    field: str
    message: str
    index: int | None = None

    def to_dict(self) -> dict:
        return {"index": self.index, "field": self.field, "message": self.message}


# Validation


class ValidationError(BillingKernelError):
    """Line item or tax configuration payload is malformed or incomplete."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field_errors: list[FieldError]):
        self.field_errors = list(field_errors)
        summary = "; ".join(
            f"items[{e.index}].{e.field}: {e.message}" if e.index is not None
            else f"{e.field}: {e.message}"
            for e in self.field_errors
        )
        super().__init__(f"Validation failed: {summary}")


class UnsupportedTaxRateError(ValidationError):
    """
    A taxable item carries a rate that has no tax bucket.

    Only raised when the configuration selects the ``reject`` policy; the
    default ``exclude`` policy leaves the item out of the tax buckets.
    """

    code: str = "UNSUPPORTED_TAX_RATE"

    def __init__(self, item_index: int, tax_rate: str):
        self.item_index = item_index
        self.tax_rate = tax_rate
        super().__init__(
            [
                FieldError(
                    field="taxRate",
                    message=f"Unsupported tax rate {tax_rate} for taxable item",
                    index=item_index,
                )
            ]
        )


# Allocation


class AllocationConflictError(BillingKernelError):
    """Document number allocation kept colliding with existing numbers."""

    code: str = "ALLOCATION_CONFLICT"

    def __init__(self, document_type: str, period_key: str, attempts: int):
        self.document_type = document_type
        self.period_key = period_key
        self.attempts = attempts
        super().__init__(
            f"Could not allocate a {document_type} number for {period_key} "
            f"after {attempts} attempt(s)"
        )


# Documents


class DocumentError(BillingKernelError):
    """Base exception for document-level errors."""

    code: str = "DOCUMENT_ERROR"


class DocumentNotFoundError(DocumentError):
    """Document with given ID was not found."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}")


class DerivationConflictError(DocumentError):
    """The source estimate already has a derived document of this type."""

    code: str = "DERIVATION_CONFLICT"

    def __init__(self, source_document_id: str, target_type: str):
        self.source_document_id = source_document_id
        self.target_type = target_type
        super().__init__(
            f"Estimate {source_document_id} already has a derived {target_type}"
        )


class InvalidDerivationError(DocumentError):
    """The requested source/target combination is not supported."""

    code: str = "INVALID_DERIVATION"

    def __init__(self, source_type: str, target_type: str, reason: str):
        self.source_type = source_type
        self.target_type = target_type
        self.reason = reason
        super().__init__(
            f"Cannot derive {target_type} from {source_type}: {reason}"
        )


class InvalidStatusTransitionError(DocumentError):
    """Status is not part of the document type's vocabulary."""

    code: str = "INVALID_STATUS"

    def __init__(self, document_type: str, status: str):
        self.document_type = document_type
        self.status = status
        super().__init__(f"Status '{status}' is not valid for {document_type}")


# Configuration


class ConfigurationError(BillingKernelError):
    """Configuration file failed validation."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid configuration '{key}': {reason}")
