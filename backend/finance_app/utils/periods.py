"""Calendar helpers for reporting periods and budget proration."""

import calendar
from datetime import date, timedelta
from typing import Optional, Tuple

# annual budgets are divided by these to get the budget for one period
PERIOD_DIVISORS = {"month": 12, "quarter": 4, "year": 1, "all": 1}


def period_divisor(time_period_type: str) -> int:
    kind = (time_period_type or "month").lower()
    if kind not in PERIOD_DIVISORS:
        raise ValueError("time_period_type must be one of month, quarter, year, all")
    return PERIOD_DIVISORS[kind]


def month_name(month: int) -> str:
    return calendar.month_name[month]


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    """First and last day of the month."""
    last = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last)


def previous_month(year: int, month: int) -> Tuple[int, int]:
    first = date(year, month, 1) - timedelta(days=1)
    return first.year, first.month


def reporting_period(today: date) -> Tuple[date, date, str]:
    """Pick the month a summary email reports on.

    During the first week of a month the previous month is reviewed
    (`review`); afterwards the month in progress is reported (`current`).
    """
    if today.day <= 7:
        year, month = previous_month(today.year, today.month)
        start, end = month_bounds(year, month)
        return start, end, "review"
    start, end = month_bounds(today.year, today.month)
    return start, end, "current"


def period_bounds(time_period_type: str, today: date) -> Tuple[Optional[date], Optional[date]]:
    """Date range of the period containing `today`; `all` is unbounded."""
    kind = (time_period_type or "month").lower()
    if kind == "all":
        return None, None
    if kind == "year":
        return date(today.year, 1, 1), date(today.year, 12, 31)
    if kind == "quarter":
        first_month = 3 * ((today.month - 1) // 3) + 1
        start, _ = month_bounds(today.year, first_month)
        _, end = month_bounds(today.year, first_month + 2)
        return start, end
    return month_bounds(today.year, today.month)
