"""
Fixed-Point Numerics

All statistics in the core are computed with Python's decimal module under a
dedicated context (34 significant digits). Floats only appear at the feature
vector boundary through to_float(), which never raises.

Features:
- fixed_point(): context manager that applies the shared context and turns
  decimal overflow / invalid operations into NumericOverflow
- Checked arithmetic helpers (dadd, dsub, dmul, ddiv) and safe_div
- dsqrt(): Newton-Raphson square root refined to a residual <= 1e-18
- dln(), dexp(), dpow() guarded transcendental helpers
- per_period_rate(): convert an annualized rate to a per-period rate

Usage:
    from pool_analytics.core.numerics import fixed_point, dsqrt, to_float

    with fixed_point():
        ratio = excess / dsqrt(variance)
    feature = to_float(ratio)
"""

import math
from collections.abc import Iterator
from contextlib import contextmanager
from decimal import (
    Context,
    Decimal,
    DivisionByZero,
    InvalidOperation,
    Overflow,
    ROUND_HALF_EVEN,
    localcontext,
)

from pool_analytics.core.errors import NumericOverflow

PRECISION = 34

FIXED_POINT_CONTEXT = Context(
    prec=PRECISION,
    rounding=ROUND_HALF_EVEN,
    Emax=999_999,
    Emin=-999_999,
    traps=[InvalidOperation, DivisionByZero, Overflow],
)

ZERO = Decimal(0)
ONE = Decimal(1)
TWO = Decimal(2)
HUNDRED = Decimal(100)
BPS_SCALE = Decimal(10_000)

SQRT_MAX_ITERATIONS = 200
LN2 = Decimal("0.6931471805599453094172321214581766")

Number = Decimal | int | float | str


@contextmanager
def fixed_point() -> Iterator[Context]:
    """
    Run a block under the shared fixed-point context.

    Decimal contexts are thread-local, so concurrent workers never observe each
    other's context changes.

    Raises:
        NumericOverflow: If the block overflows the exponent range, divides by
            zero or performs an invalid operation.
    """
    with localcontext(FIXED_POINT_CONTEXT) as ctx:
        try:
            yield ctx
        except (Overflow, DivisionByZero, InvalidOperation) as exc:
            raise NumericOverflow(f"Fixed-point operation failed: {exc.__class__.__name__}") from exc


def to_decimal(value: Number) -> Decimal:
    """
    Convert a number to Decimal without going through binary float digits.

    Floats are converted through their shortest repr so 0.1 becomes
    Decimal("0.1") rather than the exact binary expansion.

    Raises:
        NumericOverflow: If the value is NaN or infinite.
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, float):
        result = Decimal(repr(value))
    else:
        try:
            result = Decimal(value)
        except InvalidOperation as exc:
            raise NumericOverflow(f"Not a decimal number: {value!r}") from exc
    if not result.is_finite():
        raise NumericOverflow(f"Non-finite value: {value!r}")
    return result


def dadd(a: Number, b: Number) -> Decimal:
    with fixed_point():
        return to_decimal(a) + to_decimal(b)


def dsub(a: Number, b: Number) -> Decimal:
    with fixed_point():
        return to_decimal(a) - to_decimal(b)


def dmul(a: Number, b: Number) -> Decimal:
    with fixed_point():
        return to_decimal(a) * to_decimal(b)


def ddiv(a: Number, b: Number) -> Decimal:
    """Checked division. A zero divisor raises NumericOverflow."""
    with fixed_point():
        return to_decimal(a) / to_decimal(b)


def safe_div(numerator: Decimal, denominator: Decimal, default: Decimal = ZERO) -> Decimal:
    """Divide, returning `default` when the denominator is zero."""
    if denominator == 0:
        return default
    with fixed_point():
        return numerator / denominator


def clamp(value: Decimal, lower: Decimal, upper: Decimal) -> Decimal:
    if value < lower:
        return lower
    if value > upper:
        return upper
    return value


def dsqrt(value: Number) -> Decimal:
    """
    Square root by Newton-Raphson refinement.

    The seed is a power of ten close to the root. After the first step the
    iterates decrease toward the root, so refinement runs until the iterate
    stops decreasing at the working precision. The result is within one ulp of
    the true root, well inside a 1e-18 residual. Non-positive input returns 0.

    Args:
        value: Radicand

    Returns:
        Square root as Decimal

    Example:
        >>> dsqrt(Decimal("2"))
        Decimal('1.414213562373095048801688724209698')
    """
    x = to_decimal(value)
    if x <= 0:
        return ZERO

    with fixed_point():
        guess = Decimal(10) ** (x.adjusted() // 2)
        for iteration in range(SQRT_MAX_ITERATIONS):
            refined = (guess + x / guess) / TWO
            if refined == guess:
                return refined
            # Rounding can make the last step oscillate by one ulp
            if iteration > 0 and refined > guess:
                return guess
            guess = refined
        return guess


def dln(value: Decimal) -> Decimal:
    """Natural log; non-positive input returns 0."""
    if value <= 0:
        return ZERO
    with fixed_point():
        return value.ln()


def dexp(value: Decimal) -> Decimal:
    with fixed_point():
        return value.exp()


def dpow(base: Decimal, exponent: Decimal) -> Decimal:
    """Checked power. Fractional powers of negative bases raise NumericOverflow."""
    with fixed_point():
        return base**exponent


def per_period_rate(annual_rate: Decimal, periods_per_year: int) -> Decimal:
    """
    Convert an annualized rate into the equivalent compounded per-period rate.

    (1 + annual) ** (1 / periods) - 1. Rates at or below -100% fall back to
    simple division.
    """
    if periods_per_year <= 0:
        return annual_rate
    growth = ONE + annual_rate
    if growth <= 0:
        return safe_div(annual_rate, Decimal(periods_per_year))
    with fixed_point():
        return growth ** (ONE / Decimal(periods_per_year)) - ONE


def to_float(value: Number | None) -> float:
    """
    Convert to float64 without ever raising.

    NaN, infinities, unparsable input and values outside the float range map
    to 0.0.
    """
    if value is None:
        return 0.0
    try:
        result = float(value)
    except (ArithmeticError, TypeError, ValueError):
        return 0.0
    if not math.isfinite(result):
        return 0.0
    return result
