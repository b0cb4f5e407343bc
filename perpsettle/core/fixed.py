"""Pure fixed-point arithmetic for the settlement engine.

Every function is stateless and operates on plain Python ints holding values
scaled by ``UNIT`` (6 decimals).

Rounding is explicit: products and quotients truncate toward zero (not Python's
floor ``//``), so ``div(x, n) == -div(-x, n)``. The maker and taker lanes of an
accumulator stay exact negations of each other under this rule.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

UNIT: int = 1_000_000  # 1e6
SECONDS_PER_YEAR: int = 31_536_000


# -- Basic helpers -----------------------------------------------------------

def abs_val(x: int) -> int:
    """Absolute value of *x*."""
    return x if x >= 0 else -x


def sign(x: int) -> int:
    """-1, 0 or 1."""
    if x > 0:
        return 1
    if x < 0:
        return -1
    return 0


def clamp(x: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, x))


def div_trunc(a: int, b: int) -> int:
    """Integer quotient of ``a / b`` truncated toward zero."""
    if b == 0:
        raise ZeroDivisionError("fixed-point division by zero")
    q = abs_val(a) // abs_val(b)
    return q if (a >= 0) == (b > 0) else -q


# -- Fixed-point operations --------------------------------------------------

def mul(a: int, b: int) -> int:
    """``a * b`` for two fixed-point values."""
    return div_trunc(a * b, UNIT)


def div(a: int, b: int) -> int:
    """``a / b`` for two fixed-point values."""
    return div_trunc(a * UNIT, b)


def mul_div(a: int, b: int, c: int) -> int:
    """``a * b / c`` with a single rounding step."""
    return div_trunc(a * b, c)


# -- Conversion --------------------------------------------------------------

def from_decimal(value: str | int, *, name: str = "value") -> int:
    """Parse ``"0.1"`` / ``3`` into fixed-point units.

    Floats are rejected (binary representation is ambiguous), as are values
    with more precision than ``UNIT`` can hold.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"{name} must be a decimal string or int, got {type(value).__name__}")
    if isinstance(value, int):
        return value * UNIT
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a decimal string or int, got {type(value).__name__}")
    try:
        d = Decimal(value.strip())
    except InvalidOperation as exc:
        raise ValueError(f"{name} is not a decimal: {value!r}") from exc
    if not d.is_finite():
        raise ValueError(f"{name} must be finite: {value!r}")
    scaled = d * UNIT
    if scaled != scaled.to_integral_value():
        raise ValueError(f"{name} has more than 6 decimals: {value!r}")
    return int(scaled)


def to_decimal(value: int) -> Decimal:
    """Fixed-point units back to a ``Decimal`` (for display only)."""
    return Decimal(value) / UNIT
