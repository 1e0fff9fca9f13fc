"""
Pure document number formatting.

Two layouts exist in stored data and both are kept, selected by the call
path that allocates the number (see billing_config ``numbering``):

    MONTHLY   2024-03-001        year-month, 3-digit sequence
    PREFIXED  INV-202403-0001    prefix, compact year-month, 4-digit sequence

The sequence is zero-padded to the width but never truncated, so the
1000th monthly estimate is ``2024-03-1000``.

Each layout has its own counter space.  The counter key (``period_prefix``)
is also the string every number in that space starts with, which is what
the legacy count-by-prefix query matches on.
"""

from dataclasses import dataclass
from datetime import date, datetime

from billing_kernel.domain.values import DocumentNumber, DocumentType, NumberFormat

_WIDTHS: dict[NumberFormat, int] = {
    NumberFormat.MONTHLY: 3,
    NumberFormat.PREFIXED: 4,
}


@dataclass(frozen=True)
class NumberingRule:
    """Layout used for one (document type, call path) pair."""

    number_format: NumberFormat = NumberFormat.MONTHLY
    prefix: str = ""

    @property
    def width(self) -> int:
        return _WIDTHS[self.number_format]


def year_month(reference: date | datetime) -> str:
    """``YYYY-MM`` of the reference date's own calendar fields.

    Aware datetimes are read in the zone they carry; callers pass local
    wall-clock time so the month boundary follows the business calendar,
    not UTC.
    """
    return f"{reference.year:04d}-{reference.month:02d}"


def period_prefix(rule: NumberingRule, reference: date | datetime) -> str:
    """Leading part shared by every number of the rule's month."""
    if rule.number_format is NumberFormat.PREFIXED:
        return f"{rule.prefix}{reference.year:04d}{reference.month:02d}"
    return year_month(reference)


def format_number(rule: NumberingRule, reference: date | datetime, sequence: int) -> str:
    if sequence < 1:
        raise ValueError(f"Sequence must be positive, got {sequence}")
    return f"{period_prefix(rule, reference)}-{sequence:0{rule.width}d}"


def build_document_number(
    document_type: DocumentType,
    rule: NumberingRule,
    reference: date | datetime,
    sequence: int,
) -> DocumentNumber:
    return DocumentNumber(
        document_type=document_type,
        year_month=year_month(reference),
        sequence=sequence,
        formatted=format_number(rule, reference, sequence),
        number_format=rule.number_format,
    )
