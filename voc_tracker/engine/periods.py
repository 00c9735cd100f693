from __future__ import annotations

import calendar
from datetime import date, datetime
from typing import Any, List, Tuple

from voc_tracker.errors import ValidationError

MONTH_NAMES = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

ROLLING_MONTHS = 12


def to_date(value: Any) -> date:
    """Coerce a date, datetime or ISO-8601 string to a calendar date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value or "").strip()
    if not s:
        raise ValidationError("date is required.")
    # Remote list stores send "2024-01-15T00:00:00Z"
    s = s.split("T", 1)[0]
    try:
        return date.fromisoformat(s)
    except ValueError as e:
        raise ValidationError(f"Invalid calendar date: {value!r}", {"date": str(value)}) from e


def shift_month(year: int, month: int, offset: int) -> Tuple[int, int]:
    idx = year * 12 + (month - 1) + offset
    return idx // 12, idx % 12 + 1


def first_day(year: int, month: int) -> date:
    return date(year, month, 1)


def last_day(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    return first_day(year, month), last_day(year, month)


def rolling_bounds(year: int, month: int, months: int = ROLLING_MONTHS) -> Tuple[date, date]:
    """Trailing window ending at the last day of (year, month), `months` calendar months long."""
    sy, sm = shift_month(year, month, -(months - 1))
    return first_day(sy, sm), last_day(year, month)


def trailing_months(year: int, month: int, months: int = ROLLING_MONTHS) -> List[Tuple[int, int]]:
    return [shift_month(year, month, -k) for k in range(months)]


def month_name(month: int) -> str:
    return MONTH_NAMES[month - 1]
