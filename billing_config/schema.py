"""
Configuration schema -- frozen dataclasses produced by the loader.

Every value here is immutable once loaded; services receive a BillingConfig
through their constructor and never read files or environment themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from billing_kernel.domain.numbering import NumberingRule
from billing_kernel.domain.tax import UnsupportedRatePolicy
from billing_kernel.domain.values import CallPath, DocumentType


@dataclass(frozen=True)
class NumberingConfig:
    """Number layout per (document type, call path)."""

    default_rule: NumberingRule = field(default_factory=NumberingRule)
    rules: dict[tuple[DocumentType, CallPath], NumberingRule] = field(default_factory=dict)

    def rule_for(self, document_type: DocumentType, call_path: CallPath) -> NumberingRule:
        return self.rules.get((document_type, call_path), self.default_rule)


@dataclass(frozen=True)
class DocumentTypeDefaults:
    """Defaults and vocabulary for one document type."""

    document_type: DocumentType
    statuses: tuple[str, ...] = ("draft", "sent")
    default_remarks: str | None = None
    default_honorific: str | None = None
    derived_remarks: str | None = None
    duplicate_subject_suffix: str = ""
    valid_until_days: int | None = None
    delivery_days: int | None = None
    delivery_location: str | None = None
    payment_terms: str | None = None


@dataclass(frozen=True)
class DerivationConfig:
    """Estimate-to-document derivation settings."""

    targets: frozenset[DocumentType] = frozenset(
        {
            DocumentType.INVOICE,
            DocumentType.PURCHASE_ORDER,
            DocumentType.ORDER_CONFIRMATION,
            DocumentType.DELIVERY_NOTE,
        }
    )
    # Rate every derived taxable item is re-taxed at, per target type.
    # Targets without an override use the estimate's document-level rate.
    tax_rate_overrides: dict[DocumentType, Decimal] = field(default_factory=dict)
    # Rate used instead of an estimate rate of 0, per target type.
    zero_rate_fallbacks: dict[DocumentType, Decimal] = field(default_factory=dict)
    # Targets whose items keep their own per-item rate.
    keep_item_rates: frozenset[DocumentType] = frozenset({DocumentType.DELIVERY_NOTE})


@dataclass(frozen=True)
class BillingConfig:
    """The complete runtime configuration."""

    numbering: NumberingConfig = field(default_factory=NumberingConfig)
    allocation_max_attempts: int = 3
    unsupported_rate_policy: UnsupportedRatePolicy = UnsupportedRatePolicy.EXCLUDE
    derivation: DerivationConfig = field(default_factory=DerivationConfig)
    documents: dict[DocumentType, DocumentTypeDefaults] = field(default_factory=dict)
    checksum: str = ""

    def defaults_for(self, document_type: DocumentType) -> DocumentTypeDefaults:
        return self.documents.get(document_type) or DocumentTypeDefaults(document_type)
