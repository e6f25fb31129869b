"""Utility functions for the loan engine.

This module provides helpers for parsing user input into Python data types,
for half-up money rounding and for calendar arithmetic: adding months,
clipping a billing day to the real length of a month and counting the months
between two dates. It relies on ``calendar.monthrange`` so that short months
and leap years are handled with the real calendar, never a fixed table.
"""

from __future__ import annotations

import calendar
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, getcontext
from typing import Any, Optional

getcontext().prec = 28  # increase decimal precision to avoid rounding errors

CENT = Decimal("0.01")
ZERO = Decimal("0")


def round_money(value: Decimal) -> Decimal:
    """Round a monetary amount to cents using round-half-up.

    Bank statements print ``x.xx5`` amounts rounded away from zero, never to
    even.
    """
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_year_month(ym: str) -> date:
    """Parse a YYYY-MM string into a ``date`` object (first day of month).

    Parameters
    ----------
    ym: str
        A string in the form ``"YYYY-MM"``. The day component, if present,
        will be ignored.

    Returns
    -------
    date
        A date object representing the first day of the specified month.

    Raises
    ------
    ValueError
        If the string is not a valid year-month.
    """
    try:
        parts = ym.split("-")
        if len(parts) < 2:
            raise ValueError
        return date(int(parts[0]), int(parts[1]), 1)
    except (ValueError, TypeError, AttributeError) as exc:
        raise ValueError(f"Invalid year-month string: {ym}") from exc


def parse_date(value: str) -> date:
    """Parse an ISO ``YYYY-MM-DD`` string into a ``date``."""
    try:
        return date.fromisoformat(value.strip())
    except (ValueError, TypeError, AttributeError) as exc:
        raise ValueError(f"Invalid date string: {value}") from exc


def optional_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return parse_date(str(value))


def add_months(dt: date, months: int) -> date:
    """Return a new date a number of months after ``dt``.

    The day of the month is clamped to the last valid day if needed (e.g.,
    adding one month to Jan 31 yields Feb 28 or 29).
    """
    year = dt.year + (dt.month - 1 + months) // 12
    month = (dt.month - 1 + months) % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def clip_day(year: int, month: int, day: int) -> date:
    """Return ``day`` of the given month, clipped to the month's last day.

    >>> clip_day(2025, 2, 31)
    datetime.date(2025, 2, 28)
    """
    return date(year, month, min(day, days_in_month(year, month)))


def end_of_month(dt: date) -> date:
    return clip_day(dt.year, dt.month, 31)


def days_inclusive(start: date, end: date) -> int:
    """Number of calendar days in the closed interval ``[start, end]``."""
    return (end - start).days + 1


def decimal_from_str(value: str) -> Decimal:
    """Convert a numeric string into a ``Decimal``.

    The function strips any commas and handles both integer and float-like
    strings. It raises ``ValueError`` if conversion fails.
    """
    try:
        cleaned = value.replace(",", "").strip()
        return Decimal(cleaned)
    except (InvalidOperation, AttributeError) as exc:
        raise ValueError(f"Invalid numeric value: {value}") from exc


def to_decimal(value: Any) -> Decimal:
    """Convert a JSON-ish scalar (str, int, float, Decimal) into a ``Decimal``.

    Floats go through ``str`` so that ``0.03`` stays ``Decimal("0.03")``.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Invalid numeric value: {value}")
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    return decimal_from_str(str(value))


def optional_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return to_decimal(value)
