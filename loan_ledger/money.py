"""
Money Arithmetic Module

All monetary values are ``Decimal``. NEVER uses float for monetary values.
Amounts are carried in full precision through every calculation and rounded
once, at presentation or invoice finalization.
"""

from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Iterable, Union

# High precision for intermediate interest arithmetic
getcontext().prec = 28

ZERO = Decimal('0')
CENT = Decimal('0.01')

# Settlement tolerance: balances below this are treated as fully paid
EPSILON = Decimal('0.01')

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """
    Convert a value to Decimal without going through binary float repr
    
    Raises:
        ValueError: If the value is not a finite number
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValueError(f"Cannot convert {value!r} to Decimal")
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValueError(f"Cannot convert {value!r} to Decimal")
    
    if not result.is_finite():
        raise ValueError(f"Cannot convert {value!r} to Decimal")
    return result


def round_money(value: Decimal, places: int = 2) -> Decimal:
    """Round half-up to currency precision"""
    return value.quantize(Decimal('0.1') ** places, rounding=ROUND_HALF_UP)


def round_down_money(value: Decimal, places: int = 2) -> Decimal:
    """Truncate to currency precision (used for maximum allowed amounts)"""
    return value.quantize(Decimal('0.1') ** places, rounding=ROUND_DOWN)


def is_settled(value: Decimal, tolerance: Decimal = EPSILON) -> bool:
    """Check whether a balance is small enough to count as paid"""
    return value < tolerance


def clamp_zero(value: Decimal) -> Decimal:
    """Floor a value at zero"""
    return value if value > ZERO else ZERO


def money_sum(values: Iterable[Decimal]) -> Decimal:
    """Sum Decimals starting from an exact zero"""
    total = ZERO
    for value in values:
        total += value
    return total
