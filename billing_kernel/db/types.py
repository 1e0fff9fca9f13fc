"""
Module: billing_kernel.db.types
Responsibility: Decimal conversion helpers shared by domain validation and
    the JSON payload builder.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/ and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    CRITICAL: No floats anywhere in the billing kernel.  Amounts, quantities,
    prices and rates are Decimal end to end, and leave the kernel as strings.
"""

from decimal import Context, Decimal, InvalidOperation

# Exact for sums and products of Numeric(38, 9) operands.
DECIMAL_CONTEXT = Context(prec=96)


def to_decimal(value: object) -> Decimal:
    """
    Convert an incoming numeric value to Decimal.

    Accepts Decimal, int and numeric strings.  Floats are converted through
    their shortest repr so that ``0.1`` becomes ``Decimal("0.1")`` rather
    than the binary expansion.

    Raises:
        ValueError: If the value is not a finite number.
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a number: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValueError(f"Not a number: {value!r}") from None
    else:
        raise ValueError(f"Not a number: {value!r}")

    if not result.is_finite():
        raise ValueError(f"Not a finite number: {value!r}")
    return result


def decimal_to_str(value: Decimal) -> str:
    """
    Render a Decimal as a plain decimal string without exponent or
    trailing fractional zeros.

    Database round-trips pad values to the column scale
    (``Decimal("1000.000000000")``); this strips that padding so stored and
    freshly computed values serialize identically.

    Example:
        decimal_to_str(Decimal("1000.000000000")) -> "1000"
        decimal_to_str(Decimal("12.50")) -> "12.5"
    """
    if value == 0:
        return "0"
    return format(value.normalize(DECIMAL_CONTEXT), "f")


def fits_scale(value: Decimal, places: int) -> bool:
    """True when ``value`` has no non-zero digit beyond ``places`` decimals."""
    step = Decimal(1).scaleb(-places)
    return value == value.quantize(step, context=DECIMAL_CONTEXT)
