"""
UTC calendar helpers for quota rollover.

Days roll over at UTC midnight. Billing cycles are consecutive calendar-month steps
anchored at the subscription start date, each step clamped to the last day of the
target month (a subscription started on Jan 31 renews on Feb 28/29, Mar 31, ...).
"""

import calendar
from datetime import UTC, date, datetime, timedelta


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC (SQLite returns them naive)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def utc_today(now: datetime) -> date:
    return as_utc(now).date()


def add_months(anchor: date, months: int) -> date:
    """Shift ``anchor`` by whole months, clamping the day to the target month's length."""
    month_index = anchor.month - 1 + months
    year = anchor.year + month_index // 12
    month = month_index % 12 + 1
    day = min(anchor.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def current_cycle_start(start: datetime | date, now: datetime) -> date:
    """First day of the billing cycle containing ``now``."""
    anchor = as_utc(start).date() if isinstance(start, datetime) else start
    today = utc_today(now)
    if today <= anchor:
        return anchor

    months = (today.year - anchor.year) * 12 + (today.month - anchor.month)
    cycle_start = add_months(anchor, months)
    if cycle_start > today:
        cycle_start = add_months(anchor, months - 1)
    return cycle_start


def next_cycle_start(start: datetime | date, now: datetime) -> date:
    """First day of the cycle after the one containing ``now``."""
    anchor = as_utc(start).date() if isinstance(start, datetime) else start
    current = current_cycle_start(anchor, now)
    months = (current.year - anchor.year) * 12 + (current.month - anchor.month)
    return add_months(anchor, months + 1)


def next_utc_midnight(now: datetime) -> datetime:
    today = utc_today(now)
    return datetime(today.year, today.month, today.day, tzinfo=UTC) + timedelta(days=1)


__all__ = [
    "as_utc",
    "utc_today",
    "add_months",
    "current_cycle_start",
    "next_cycle_start",
    "next_utc_midnight",
]
