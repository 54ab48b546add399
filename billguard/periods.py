"""
Period windows for spending limits.

A window is the half-open interval [start, reset) that contains "now".
Windows are computed in the timezone carried by ``now``; naive datetimes
are treated as UTC.
"""

from __future__ import annotations

import math
from datetime import datetime, UTC, timedelta
from enum import Enum
from typing import NamedTuple, Optional


class Period(str, Enum):
    """Recurrence periods for spending limits."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class PeriodWindow(NamedTuple):
    start: datetime
    reset: datetime


def as_utc(moment: datetime) -> datetime:
    """Treat a naive datetime as UTC. Aware datetimes pass through."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment


def resolve_now(now: Optional[datetime] = None) -> datetime:
    """The reference instant for a calculation: ``now`` or the current UTC time."""
    if now is None:
        return datetime.now(UTC)
    return as_utc(now)


def _midnight(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def first_of_next_month(moment: datetime) -> datetime:
    """Midnight on the first day of the calendar month after ``moment``."""
    start = _midnight(moment).replace(day=1)
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)


def calculate_period_dates(
    period: Period | str,
    now: Optional[datetime] = None,
) -> PeriodWindow:
    """
    Compute the window for ``period`` that contains ``now``.

    Args:
        period: One of daily, weekly, monthly, yearly.
        now: Reference instant. Defaults to the current UTC time.

    Returns:
        PeriodWindow with ``start <= now < reset``.

    Weeks start on Sunday and are exactly seven days long.
    """
    now = resolve_now(now)
    period = Period(period)
    today = _midnight(now)

    if period == Period.DAILY:
        start = today
        reset = today + timedelta(days=1)
    elif period == Period.WEEKLY:
        # weekday() is Monday=0, so Sunday is 6
        days_since_sunday = (now.weekday() + 1) % 7
        start = today - timedelta(days=days_since_sunday)
        reset = start + timedelta(days=7)
    elif period == Period.MONTHLY:
        start = today.replace(day=1)
        reset = first_of_next_month(now)
    else:
        start = today.replace(month=1, day=1)
        reset = start.replace(year=start.year + 1)

    return PeriodWindow(start=start, reset=reset)


def format_period(period: Period | str) -> str:
    """Human label for a period ("Monthly")."""
    return Period(period).value.capitalize()


def get_period_days_remaining(reset_date: datetime, now: Optional[datetime] = None) -> int:
    """Whole days until ``reset_date``, rounded up, never negative."""
    now = resolve_now(now)
    days = (reset_date - now).total_seconds() / 86400
    return max(0, math.ceil(days))
