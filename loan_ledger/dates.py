"""
Calendar Date Module

Day-count and month arithmetic on calendar dates. All dates in the ledger are
``datetime.date`` values exchanged as ``YYYY-MM-DD`` strings; there is no
time-of-day component, so day counts never shift with DST or timezones.
"""

import calendar
import re
from datetime import date, timedelta
from typing import Iterator, Tuple, Union

from .exceptions import ValidationError


DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

DateLike = Union[date, str]


def parse_date(value: DateLike, field: str = "date") -> date:
    """
    Parse a ``YYYY-MM-DD`` string into a date
    
    Args:
        value: Date string or date
        field: Field name used in the error message
        
    Returns:
        Parsed date
        
    Raises:
        ValidationError: If the value is malformed or not a real calendar date
    """
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not DATE_PATTERN.match(value):
        raise ValidationError(f"Invalid {field}: expected YYYY-MM-DD, got {value!r}",
                              {'field': field, 'value': value})
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid {field}: {value} is not a calendar date",
                              {'field': field, 'value': value})


def format_date(value: date) -> str:
    """Format a date as YYYY-MM-DD"""
    return value.isoformat()


def days_between(first: date, second: date) -> int:
    """Absolute number of calendar days between two dates"""
    return abs((second - first).days)


def month_bounds(month: int, year: int) -> Tuple[date, date]:
    """
    First and last calendar day of a month
    
    Raises:
        ValidationError: If month is outside 1-12
    """
    if not 1 <= month <= 12:
        raise ValidationError(f"Invalid month {month}: must be between 1 and 12",
                              {'month': month})
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def add_months(month: int, year: int, delta: int) -> Tuple[int, int]:
    """Shift a (month, year) pair by ``delta`` months"""
    index = year * 12 + (month - 1) + delta
    return index % 12 + 1, index // 12


def iter_months(start: Tuple[int, int], end: Tuple[int, int]) -> Iterator[Tuple[int, int]]:
    """Yield (month, year) pairs from start through end, inclusive"""
    month, year = start
    end_month, end_year = end
    while (year, month) <= (end_year, end_month):
        yield month, year
        month, year = add_months(month, year, 1)


def last_completed_month(today: date) -> Tuple[int, int]:
    """The most recent month that has fully elapsed as of ``today``"""
    return add_months(today.month, today.year, -1)


def day_before(value: date) -> date:
    return value - timedelta(days=1)


def loan_number(loan_id: int, start_date: date) -> str:
    """Human-readable loan number: zero-padded id + ddmmyyyy of the start date"""
    return f"{loan_id:02d}-{start_date.strftime('%d%m%Y')}"


def invoice_id(month: int, year: int) -> str:
    """Deterministic monthly invoice id: INV-YYYYMM"""
    return f"INV-{year}{month:02d}"
