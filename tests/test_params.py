import pytest

from event_stats.errors import InvalidParameter
from event_stats.params import normalize_count, validate_month, validate_year


@pytest.mark.parametrize("value", [None, 0, -5])
def test_non_positive_counts_fall_back_to_default(value):
    assert normalize_count(value, 10) == 10


def test_positive_count_is_kept():
    assert normalize_count(3, 10, maximum=100) == 3


def test_count_above_maximum_is_rejected():
    with pytest.raises(InvalidParameter) as excinfo:
        normalize_count(101, 10, maximum=100, field="limit")
    assert excinfo.value.field == "limit"
    assert excinfo.value.to_dict()["error"] == "INVALID_ARGUMENT"


@pytest.mark.parametrize("month", [0, 13, -1])
def test_invalid_month(month):
    with pytest.raises(InvalidParameter):
        validate_month(month)


def test_invalid_year():
    with pytest.raises(InvalidParameter):
        validate_year(0)
    assert validate_year(2024) == 2024
