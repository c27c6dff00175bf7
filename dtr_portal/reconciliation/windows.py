"""Day-window resolution: coarse filter + sub-period → ordered calendar dates."""

from __future__ import annotations

import calendar
from datetime import date, timedelta

from dtr_portal.common.constants import CoarseFilter, SubPeriod
from dtr_portal.common.exceptions import InvalidPeriodError

MONTHLY_FILTERS = frozenset({CoarseFilter.this_month, CoarseFilter.last_month})
LAST_2_WEEKS_DAYS = 14
FIRST_HALF_LAST_DAY = 15


def _month_of(coarse_filter: CoarseFilter, today: date) -> tuple[int, int]:
    if coarse_filter == CoarseFilter.this_month:
        return today.year, today.month
    if today.month == 1:
        return today.year - 1, 12
    return today.year, today.month - 1


def _date_range(start: date, end: date) -> list[date]:
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


def window_bounds(
    coarse_filter: CoarseFilter,
    period: SubPeriod,
    today: date,
) -> tuple[date, date]:
    """Return the inclusive (start, end) pair for a filter/period.

    Raises InvalidPeriodError when a half-month is requested for a filter
    that has no month to split.
    """
    if coarse_filter not in MONTHLY_FILTERS:
        if period != SubPeriod.full:
            raise InvalidPeriodError(coarse_filter.value, period.value)
        if coarse_filter == CoarseFilter.today:
            return today, today
        return today - timedelta(days=LAST_2_WEEKS_DAYS - 1), today

    year, month = _month_of(coarse_filter, today)
    last_day = calendar.monthrange(year, month)[1]

    if period == SubPeriod.first_half:
        return date(year, month, 1), date(year, month, FIRST_HALF_LAST_DAY)
    if period == SubPeriod.second_half:
        return date(year, month, FIRST_HALF_LAST_DAY + 1), date(year, month, last_day)
    return date(year, month, 1), date(year, month, last_day)


def resolve_window(
    coarse_filter: CoarseFilter,
    period: SubPeriod,
    today: date,
) -> list[date]:
    """Ordered, contiguous, duplicate-free dates for the selection."""
    start, end = window_bounds(coarse_filter, period, today)
    return _date_range(start, end)
