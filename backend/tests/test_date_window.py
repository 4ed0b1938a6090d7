"""
Tests for the date window resolver.
"""

from datetime import date

import pytest

from trackprofit.errors import ErrorKind, ServiceError
from trackprofit.services.date_window import PRESETS, earliest_allowed, resolve, shift_months

TODAY = date(2024, 3, 15)


@pytest.mark.parametrize("preset, since, until", [
    ("today", date(2024, 3, 15), date(2024, 3, 15)),
    ("yesterday", date(2024, 3, 14), date(2024, 3, 14)),
    ("last_7_days", date(2024, 3, 9), date(2024, 3, 15)),
    ("last_30_days", date(2024, 2, 15), date(2024, 3, 15)),
    ("this_month", date(2024, 3, 1), date(2024, 3, 15)),
    ("last_month", date(2024, 2, 1), date(2024, 2, 29)),
    ("last_3_months", date(2023, 12, 15), date(2024, 3, 15)),
    ("this_year", date(2024, 1, 1), date(2024, 3, 15)),
    ("last_year", date(2023, 1, 1), date(2023, 12, 31)),
    ("lifetime", date(2021, 2, 1), date(2024, 3, 15)),
    ("max_range", date(2021, 2, 1), date(2024, 3, 15)),
])
def test_presets(preset, since, until):
    window = resolve(preset, today=TODAY)
    assert (window.since, window.until) == (since, until)


@pytest.mark.parametrize("preset", [p for p in PRESETS if p != "custom"])
@pytest.mark.parametrize("today", [date(2024, 3, 15), date(2024, 1, 1), date(2023, 12, 31), date(2024, 2, 29)])
def test_non_custom_windows_are_bounded(preset, today):
    window = resolve(preset, today=today)
    assert window.since >= earliest_allowed(today)
    assert window.since <= window.until


def test_earliest_allowed_is_first_of_month_37_months_back():
    assert earliest_allowed(TODAY) == date(2021, 2, 1)


def test_custom_window_entirely_before_history_is_rejected():
    with pytest.raises(ServiceError) as exc:
        resolve("custom", "2019-01-01", "2020-01-01", today=TODAY)
    assert exc.value.kind is ErrorKind.INVALID_INPUT


def test_custom_window_clamps_both_ends():
    window = resolve("custom", "2020-06-01", "2024-12-31", today=TODAY)
    assert window.since == date(2021, 2, 1)
    assert window.until == TODAY


def test_custom_window_inside_history():
    window = resolve("custom", "2024-01-05", "2024-01-20", today=TODAY)
    assert window.as_strings() == {"since": "2024-01-05", "until": "2024-01-20"}


@pytest.mark.parametrize("start, end", [
    (None, "2024-01-20"),
    ("2024-01-05", None),
    ("2024-02-01", "2024-01-01"),
    ("not-a-date", "2024-01-01"),
])
def test_custom_window_invalid_input(start, end):
    with pytest.raises(ServiceError) as exc:
        resolve("custom", start, end, today=TODAY)
    assert exc.value.kind is ErrorKind.INVALID_INPUT


def test_unknown_preset():
    with pytest.raises(ServiceError) as exc:
        resolve("fortnight", today=TODAY)
    assert exc.value.reason == "unknown_preset"


def test_shift_months_clamps_day():
    assert shift_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert shift_months(date(2024, 3, 31), -1) == date(2024, 2, 29)
    assert shift_months(date(2024, 1, 15), -13) == date(2022, 12, 15)
