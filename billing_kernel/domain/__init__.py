"""
Pure domain layer: value objects, rounding, tax computation, numbering.

Nothing in this package performs I/O; everything is deterministic given its
inputs (and an injected Clock).
"""

from billing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from billing_kernel.domain.numbering import NumberingRule
from billing_kernel.domain.tax import UnsupportedRatePolicy, calculate_amounts
from billing_kernel.domain.values import (
    CallPath,
    DocumentDraft,
    DocumentNumber,
    DocumentTaxType,
    DocumentType,
    ItemTaxType,
    LineItem,
    MonetaryTotals,
    NumberFormat,
    RoundingType,
    TaxConfiguration,
)

__all__ = [
    "CallPath",
    "Clock",
    "DeterministicClock",
    "DocumentDraft",
    "DocumentNumber",
    "DocumentTaxType",
    "DocumentType",
    "ItemTaxType",
    "LineItem",
    "MonetaryTotals",
    "NumberFormat",
    "NumberingRule",
    "RoundingType",
    "SystemClock",
    "TaxConfiguration",
    "UnsupportedRatePolicy",
    "calculate_amounts",
]
