from datetime import date, datetime, timedelta, timezone

import pytest

from event_stats.metrics import (
    activity_level,
    as_utc,
    calendar_month_bounds,
    days_until,
    growth_rate,
    month_bounds,
    percent_of,
    previous_month_start,
    to_date,
    trailing_window_start,
    year_bounds,
)

UTC = timezone.utc


@pytest.mark.parametrize("numerator", [0, 1, 7, 1000])
def test_percent_of_zero_denominator_is_zero(numerator):
    assert percent_of(numerator, 0) == 0.0


def test_percent_of_ratio():
    assert percent_of(6, 8) == 75.0
    assert percent_of(3, 100) == 3.0


@pytest.mark.parametrize(
    "count, level",
    [(1, 1), (2, 2), (3, 2), (4, 3), (5, 3), (6, 4), (40, 4)],
)
def test_activity_level_tiers(count, level):
    assert activity_level(count) == level


def test_growth_rate_edge_cases():
    assert growth_rate(0, 0) == 0
    assert growth_rate(5, 0) == 100
    assert growth_rate(10, 20) == -50
    assert growth_rate(30, 20) == 50


def test_month_bounds_use_calendar_arithmetic():
    assert month_bounds(2024, 2) == (datetime(2024, 2, 1, tzinfo=UTC), datetime(2024, 3, 1, tzinfo=UTC))
    assert month_bounds(2023, 12) == (datetime(2023, 12, 1, tzinfo=UTC), datetime(2024, 1, 1, tzinfo=UTC))


def test_calendar_month_bounds_normalizes_to_utc():
    # 01:30 on March 1st in UTC+3 is still February in UTC.
    local = datetime(2024, 3, 1, 1, 30, tzinfo=timezone(timedelta(hours=3)))
    start, end = calendar_month_bounds(local)
    assert start == datetime(2024, 2, 1, tzinfo=UTC)
    assert end == datetime(2024, 3, 1, tzinfo=UTC)


def test_previous_month_start_rolls_over_year():
    assert previous_month_start(datetime(2024, 1, 1, tzinfo=UTC)) == datetime(2023, 12, 1, tzinfo=UTC)
    assert previous_month_start(datetime(2024, 7, 1, tzinfo=UTC)) == datetime(2024, 6, 1, tzinfo=UTC)


def test_year_bounds():
    assert year_bounds(2024) == (datetime(2024, 1, 1, tzinfo=UTC), datetime(2025, 1, 1, tzinfo=UTC))


def test_trailing_window_start():
    now = datetime(2024, 6, 15, 12, tzinfo=UTC)
    assert trailing_window_start(now, 30) == datetime(2024, 5, 16, 12, tzinfo=UTC)


def test_days_until_floors_hours():
    now = datetime(2024, 6, 15, 12, tzinfo=UTC)
    assert days_until(now + timedelta(hours=6), now) == 0
    assert days_until(now + timedelta(hours=47), now) == 1
    assert days_until(now + timedelta(days=3), now) == 3
    assert days_until(now - timedelta(hours=6), now) == -1


def test_as_utc_treats_naive_values_as_utc():
    assert as_utc(datetime(2024, 1, 1, 8)) == datetime(2024, 1, 1, 8, tzinfo=UTC)
    shifted = datetime(2024, 1, 1, 8, tzinfo=timezone(timedelta(hours=2)))
    assert as_utc(shifted) == datetime(2024, 1, 1, 6, tzinfo=UTC)


def test_to_date_accepts_store_day_buckets():
    assert to_date("2024-02-10") == date(2024, 2, 10)
    assert to_date(date(2024, 2, 10)) == date(2024, 2, 10)
    assert to_date(datetime(2024, 2, 10, 23, 0)) == date(2024, 2, 10)
    with pytest.raises(TypeError):
        to_date(None)
