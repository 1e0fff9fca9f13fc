"""
RoundingPolicy -- maps a rounding type to a Decimal-to-integer function.

Pure, total, no error cases.  Each function returns an integral Decimal
(exponent 0) so the result can flow straight back into Decimal arithmetic
and serializes as ``"1000"``, never ``"1E+3"``.

``round`` follows Python's own rounding convention, round-half-to-even
(``round(Decimal("2.5")) == 2``).  A tax bucket of exactly ``x.5`` therefore
rounds to the nearest even yen, unlike JavaScript's ``Math.round`` which
rounds half toward positive infinity.
"""

from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_EVEN, Decimal
from typing import Callable

from billing_kernel.db.types import DECIMAL_CONTEXT
from billing_kernel.domain.values import RoundingType

RoundingFunction = Callable[[Decimal], Decimal]

_INTEGER = Decimal("1")

_MODES: dict[RoundingType, str] = {
    RoundingType.FLOOR: ROUND_FLOOR,
    RoundingType.CEIL: ROUND_CEILING,
    RoundingType.ROUND: ROUND_HALF_EVEN,
}


def resolve(policy: RoundingType | str) -> RoundingFunction:
    """Return the rounding function for ``policy``."""
    mode = _MODES[RoundingType(policy)]

    def _round(value: Decimal) -> Decimal:
        return value.quantize(_INTEGER, rounding=mode, context=DECIMAL_CONTEXT)

    _round.__name__ = f"round_{RoundingType(policy).value}"
    return _round


def apply(policy: RoundingType | str, value: Decimal) -> Decimal:
    """Round ``value`` to an integer under ``policy``."""
    return resolve(policy)(value)
