"""
Donor eligibility.

A donor may give blood again once a whole number of calendar months (three
by default) has passed since their last donation. Month arithmetic clamps to
the last day of a shorter month, so 31 May minus three months is the last
day of February.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta

from lifedrop.config import get_settings


def _to_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def add_months(day: date, months: int) -> date:
    """Shift ``day`` by ``months`` calendar months (negative goes back)."""
    month_index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def subtract_months(day: date, months: int) -> date:
    return add_months(day, -months)


def _interval(months: int | None) -> int:
    return get_settings().donation_interval_months if months is None else months


def eligibility_cutoff(as_of: date | datetime, months: int | None = None) -> date:
    """Latest last-donation date that is still eligible on ``as_of``."""
    return subtract_months(_to_date(as_of), _interval(months))


def is_eligible(
    last_donation_date: date | datetime | None,
    now: date | datetime,
    months: int | None = None,
) -> bool:
    """
    True if a donor with this last donation date may donate on ``now``.

    Never donated is always eligible. Exactly ``months`` months ago is eligible.
    """
    if last_donation_date is None:
        return True
    return _to_date(last_donation_date) <= eligibility_cutoff(now, months)


def next_eligible_date(
    last_donation_date: date | datetime | None,
    months: int | None = None,
) -> date | None:
    """First day the donor may donate again, or None if they never donated."""
    if last_donation_date is None:
        return None
    last = _to_date(last_donation_date)
    months = _interval(months)
    candidate = add_months(last, months)
    # Clamping can land short: 30 Nov + 3 months is 28 Feb, but the cutoff on
    # 28 Feb is 28 Nov. Step forward to the first day that passes is_eligible.
    while subtract_months(candidate, months) < last:
        candidate += timedelta(days=1)
    return candidate
