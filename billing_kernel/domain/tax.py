"""
TaxSplitter / AmountCalculator -- subtotal, split tax buckets and total.

Responsibility:
    Turn an ordered list of LineItems and a TaxConfiguration into the
    MonetaryTotals persisted on every document.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Called by the
    document writer on create, duplicate, derive and item replacement.

Algorithm:
    1. amount = supplied amount, else quantity * unit_price
    2. subtotal += amount for every item
    3. taxable items are routed to the 8% or 10% bucket by their own rate
    4. non-taxable and tax-included items contribute to subtotal only
    5. each bucket is rounded ONCE, after summation
    6. tax = rounded8 + rounded10; total = subtotal + tax

Invariants enforced:
    - subtotal == sum(resolved amounts), exact Decimal arithmetic.  The
      whole computation runs under DECIMAL_CONTEXT, whose precision covers
      every value a Numeric(38, 9) column can hold.
    - tax_amount == tax_amount_8 + tax_amount_10.
    - Deterministic: identical inputs give identical Decimal outputs.

Failure modes:
    - UnsupportedTaxRateError for a taxable item whose rate is neither 8
      nor 10, but only under ``UnsupportedRatePolicy.REJECT``.  Under the
      default EXCLUDE policy the item stays in the subtotal and is left
      out of both tax buckets; its index is reported on the result.
"""

from __future__ import annotations

from decimal import Decimal, localcontext
from enum import Enum
from typing import Sequence

from billing_kernel.db.types import DECIMAL_CONTEXT
from billing_kernel.domain import rounding
from billing_kernel.domain.values import (
    CalculationResult,
    ItemTaxType,
    LineItem,
    MonetaryTotals,
    TaxConfiguration,
)
from billing_kernel.exceptions import UnsupportedTaxRateError

RATE_8 = Decimal("8")
RATE_10 = Decimal("10")
SUPPORTED_RATES: frozenset[Decimal] = frozenset({RATE_8, RATE_10})

_HUNDRED = Decimal("100")


class UnsupportedRatePolicy(str, Enum):
    """What to do with a taxable item whose rate has no bucket."""

    EXCLUDE = "exclude"
    REJECT = "reject"


class TaxSplitter:
    """Accumulates subtotal and the two unrounded tax buckets."""

    def __init__(self, policy: UnsupportedRatePolicy = UnsupportedRatePolicy.EXCLUDE):
        self._policy = policy
        self.subtotal = Decimal("0")
        self.bucket_8 = Decimal("0")
        self.bucket_10 = Decimal("0")
        self.excluded: list[int] = []

    def add(self, index: int, item: LineItem) -> None:
        amount = item.resolved_amount
        self.subtotal += amount

        if item.tax_type is not ItemTaxType.TAXABLE:
            return

        if item.tax_rate == RATE_8:
            self.bucket_8 += amount * RATE_8 / _HUNDRED
        elif item.tax_rate == RATE_10:
            self.bucket_10 += amount * RATE_10 / _HUNDRED
        elif self._policy is UnsupportedRatePolicy.REJECT:
            raise UnsupportedTaxRateError(index, str(item.tax_rate))
        else:
            self.excluded.append(index)


def calculate_amounts(
    items: Sequence[LineItem],
    config: TaxConfiguration,
    policy: UnsupportedRatePolicy = UnsupportedRatePolicy.EXCLUDE,
) -> CalculationResult:
    """
    Compute MonetaryTotals for ``items`` under ``config``.

    An empty item list is not an error; it yields all-zero totals.

    Raises:
        UnsupportedTaxRateError: Only under UnsupportedRatePolicy.REJECT.
    """
    with localcontext(DECIMAL_CONTEXT):
        splitter = TaxSplitter(policy)
        for index, item in enumerate(items):
            splitter.add(index, item)

        round_fn = rounding.resolve(config.rounding_type)
        tax_8 = round_fn(splitter.bucket_8)
        tax_10 = round_fn(splitter.bucket_10)
        tax_amount = tax_8 + tax_10

        totals = MonetaryTotals(
            subtotal=splitter.subtotal,
            tax_amount=tax_amount,
            tax_amount_8=tax_8,
            tax_amount_10=tax_10,
            total_amount=splitter.subtotal + tax_amount,
        )
    return CalculationResult(
        totals=totals,
        excluded_item_indices=tuple(splitter.excluded),
    )
