"""
Unit tests for time-window arithmetic (mealpass/services/time_window.py).

Covers:
    - same-day windows with and without tolerance
    - overnight windows (22:00–02:00, night shifts)
    - tolerance never carrying a same-day window past midnight
    - empty (start == end) windows
    - HH:MM / HH:MM:SS parsing
"""

from datetime import date, time

import pytest

from mealpass.services.time_window import (
    InvalidWindowError,
    format_window,
    is_date_not_in_past,
    is_within_window,
    parse_time_of_day,
    to_minutes,
    validate_window,
)


class TestSameDayWindow:
    @pytest.mark.parametrize("current, expected", [
        (time(7, 59), False),
        (time(8, 0), True),
        (time(12, 30), True),
        (time(17, 0), True),
        (time(17, 1), False),
    ])
    def test_bounds_are_inclusive(self, current, expected):
        assert is_within_window(current, time(8, 0), time(17, 0)) is expected

    def test_tolerance_extends_end_only(self):
        assert is_within_window(time(17, 10), time(8, 0), time(17, 0), 15) is True
        assert is_within_window(time(17, 15), time(8, 0), time(17, 0), 15) is True
        assert is_within_window(time(17, 20), time(8, 0), time(17, 0), 15) is False
        assert is_within_window(time(7, 50), time(8, 0), time(17, 0), 15) is False

    def test_seconds_are_truncated(self):
        assert is_within_window(time(17, 0, 59), time(8, 0), time(17, 0)) is True

    def test_negative_tolerance_treated_as_zero(self):
        assert is_within_window(time(17, 0), time(8, 0), time(17, 0), -5) is True


class TestOvernightWindow:
    @pytest.mark.parametrize("current, expected", [
        (time(21, 59), False),
        (time(22, 0), True),
        (time(23, 59), True),
        (time(0, 0), True),
        (time(1, 30), True),
        (time(2, 0), True),
        (time(2, 1), False),
        (time(12, 0), False),
    ])
    def test_ceia_22_to_02(self, current, expected):
        assert is_within_window(current, time(22, 0), time(2, 0)) is expected

    def test_night_shift_with_tolerance(self):
        assert is_within_window(time(6, 10), time(22, 0), time(6, 0), 15) is True
        assert is_within_window(time(6, 16), time(22, 0), time(6, 0), 15) is False


class TestToleranceOverflow:
    def test_tolerance_does_not_cross_midnight(self):
        assert is_within_window(time(23, 59), time(8, 0), time(23, 50), 15) is True
        assert is_within_window(time(0, 3), time(8, 0), time(23, 50), 15) is False
        assert is_within_window(time(7, 59), time(8, 0), time(23, 50), 15) is False


class TestEmptyWindow:
    def test_equal_bounds_raise(self):
        with pytest.raises(InvalidWindowError):
            is_within_window(time(10, 0), time(8, 0), time(8, 0))

    def test_equal_to_the_minute_raises(self):
        with pytest.raises(InvalidWindowError):
            validate_window(time(8, 0, 10), time(8, 0, 50))

    def test_distinct_bounds_accepted(self):
        validate_window(time(22, 0), time(2, 0))


class TestParsing:
    def test_hh_mm(self):
        assert parse_time_of_day("07:05") == time(7, 5)

    def test_hh_mm_ss(self):
        assert parse_time_of_day("23:59:30") == time(23, 59, 30)

    def test_time_passthrough(self):
        assert parse_time_of_day(time(6, 0)) == time(6, 0)

    @pytest.mark.parametrize("raw", ["", "7h", "25:00", "12:60", None])
    def test_invalid(self, raw):
        with pytest.raises(ValueError):
            parse_time_of_day(raw)

    def test_to_minutes(self):
        assert to_minutes(time(17, 15)) == 17 * 60 + 15

    def test_format_window(self):
        assert format_window(time(8, 0), time(17, 0)) == "08:00 às 17:00"


def test_date_not_in_past_accepts_today():
    today = date(2025, 3, 12)
    assert is_date_not_in_past(today, today) is True
    assert is_date_not_in_past(date(2025, 3, 13), today) is True
    assert is_date_not_in_past(date(2025, 3, 11), today) is False
