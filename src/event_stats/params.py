from __future__ import annotations

from typing import Optional

from .errors import InvalidParameter

DEFAULT_TOP_LIMIT = 10
DEFAULT_ORGANIZATION_LIMIT = 20
DEFAULT_WINDOW_DAYS = 90
DEFAULT_DAYS_AHEAD = 30
DEFAULT_LOW_REGISTRATION_LIMIT = 50

MIN_YEAR = 1
MAX_YEAR = 9998


def normalize_count(
    value: Optional[int],
    default: int,
    maximum: Optional[int] = None,
    field: str = "value",
) -> int:
    """
    Resolve a count-like request parameter.

    Missing or non-positive values fall back to ``default``. Values above
    ``maximum`` are rejected since they end up as SQL limits or window sizes.
    """

    if value is None or value <= 0:
        return default
    if maximum is not None and value > maximum:
        raise InvalidParameter(f"{field} must be at most {maximum}, got {value}", field=field, value=value)
    return int(value)


def validate_year(year: int) -> int:
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise InvalidParameter(f"year must be between {MIN_YEAR} and {MAX_YEAR}, got {year}", field="year", value=year)
    return int(year)


def validate_month(month: int) -> int:
    if not 1 <= month <= 12:
        raise InvalidParameter(f"month must be between 1 and 12, got {month}", field="month", value=month)
    return int(month)
