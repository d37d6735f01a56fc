"""
Derived metrics shared by every statistics view.

Everything here is pure: no store access, no clock reads. Callers pass ``now``
explicitly so the functions stay deterministic under test.
"""

from __future__ import annotations

import math
from datetime import date, datetime, timedelta, timezone
from typing import Tuple, Union

UTC = timezone.utc

# (exclusive upper bound, level) pairs; anything above the last bound is level 4.
_ACTIVITY_TIERS = ((1, 1), (3, 2), (5, 3))


def percent_of(numerator: float, denominator: float) -> float:
    if denominator <= 0:
        return 0.0
    return numerator / denominator * 100


def activity_level(count: int) -> int:
    """
    Bucket a daily event count into a heatmap level.

    1 event -> 1, 2-3 -> 2, 4-5 -> 3, 6+ -> 4.
    """

    for upper, level in _ACTIVITY_TIERS:
        if count <= upper:
            return level
    return 4


def growth_rate(current: float, previous: float) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def month_bounds(year: int, month: int) -> Tuple[datetime, datetime]:
    start = datetime(year, month, 1, tzinfo=UTC)
    if month == 12:
        end = datetime(year + 1, 1, 1, tzinfo=UTC)
    else:
        end = datetime(year, month + 1, 1, tzinfo=UTC)
    return start, end


def calendar_month_bounds(now: datetime) -> Tuple[datetime, datetime]:
    now = as_utc(now)
    return month_bounds(now.year, now.month)


def previous_month_start(month_start: datetime) -> datetime:
    if month_start.month == 1:
        return month_start.replace(year=month_start.year - 1, month=12)
    return month_start.replace(month=month_start.month - 1)


def year_bounds(year: int) -> Tuple[datetime, datetime]:
    return datetime(year, 1, 1, tzinfo=UTC), datetime(year + 1, 1, 1, tzinfo=UTC)


def trailing_window_start(now: datetime, days: int) -> datetime:
    return as_utc(now) - timedelta(days=days)


def days_until(target: datetime, now: datetime) -> int:
    hours = (as_utc(target) - as_utc(now)).total_seconds() / 3600
    return math.floor(hours / 24)


def to_date(value: Union[date, datetime, str]) -> date:
    """
    Normalize a day bucket returned by ``DATE(...)``.

    PostgreSQL hands back ``date`` objects while SQLite returns ISO strings.
    """

    if isinstance(value, datetime):
        return as_utc(value).date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    raise TypeError(f"unsupported day bucket {value!r}")
