"""
Calendar helpers for day-of-month scheduling and budget periods.

Day-of-month triggers are clamped to the last day of short months:
a day_of_month of 31 fires on Apr 30 and Feb 28/29, never on any other day.
Month arithmetic goes through ``dateutil.relativedelta``, which applies the
same clamp.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Literal

from dateutil.relativedelta import SU, relativedelta

Period = Literal["weekly", "monthly", "yearly"]


def trigger_date(day_of_month: int, month_of: date) -> date:
    """Date a 1-31 trigger fires in the month containing ``month_of``."""
    return month_of + relativedelta(day=max(day_of_month, 1))


def is_trigger_day(day_of_month: int, today: date) -> bool:
    """True if a day-of-month trigger fires on ``today``."""
    return trigger_date(day_of_month, today) == today


def month_key(value: date) -> str:
    """``YYYY-MM`` key of a date."""
    return f"{value.year:04d}-{value.month:02d}"


def same_month(a: date | None, b: date) -> bool:
    return a is not None and (a.year, a.month) == (b.year, b.month)


def month_bounds(value: date) -> tuple[date, date]:
    """First day of the month and first day of the following month."""
    start = value + relativedelta(day=1)
    return start, start + relativedelta(months=1)


def add_months(value: date, months: int) -> date:
    """Shift by whole months, clamping the day to the target month's length."""
    return value + relativedelta(months=months)


def next_trigger_date(day_of_month: int, today: date) -> date:
    """Next date (today included) on which a day-of-month trigger fires."""
    this_month = trigger_date(day_of_month, today)
    if this_month >= today:
        return this_month
    return trigger_date(day_of_month, today + relativedelta(months=1, day=1))


def period_start(period: Period, today: date) -> date:
    """Start of the current budget period. Weeks start on Sunday."""
    if period == "weekly":
        return today + relativedelta(weekday=SU(-1))
    if period == "yearly":
        return today + relativedelta(month=1, day=1)
    return today + relativedelta(day=1)


def period_end(period: Period, today: date) -> date:
    """Last day (inclusive) of the current budget period."""
    if period == "weekly":
        return period_start(period, today) + timedelta(days=6)
    if period == "yearly":
        return today + relativedelta(month=12, day=31)
    return today + relativedelta(day=31)
