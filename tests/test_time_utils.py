"""Unit tests for time utilities."""
import pytest
from datetime import time, date, datetime

from venue.utils.time_utils import (
    parse_date,
    parse_time,
    format_time,
    format_time_range,
    to_minutes,
    is_valid_time_range,
    slot_length,
    slot_contains,
    slot_has_ended,
    slot_has_started,
)


class TestParseDate:
    """Tests for parse_date function."""

    def test_parse_iso_string(self):
        assert parse_date("2024-06-01") == date(2024, 6, 1)

    def test_date_passes_through(self):
        assert parse_date(date(2024, 6, 1)) == date(2024, 6, 1)

    def test_datetime_is_truncated(self):
        assert parse_date(datetime(2024, 6, 1, 18, 30)) == date(2024, 6, 1)

    @pytest.mark.parametrize("value", ["01/06/2024", "2024-13-01", "", "tomorrow", None, 20240601])
    def test_malformed_values_rejected(self, value):
        with pytest.raises(ValueError):
            parse_date(value)


class TestParseTime:
    """Tests for parse_time function."""

    def test_parse_valid_time(self):
        assert parse_time("18:00") == time(18, 0)
        assert parse_time("09:30") == time(9, 30)
        assert parse_time("9") == time(9, 0)

    def test_parse_time_24_as_midnight(self):
        assert parse_time("24:00") == time(0, 0)

    def test_parse_invalid_time(self):
        assert parse_time("invalid") is None
        assert parse_time("25:00") is None
        assert parse_time("12:60") is None
        assert parse_time(None) is None


class TestFormatting:
    def test_format_time(self):
        assert format_time(time(9, 5)) == "09:05"

    def test_format_time_range(self):
        assert format_time_range(time(23, 0), time(0, 0)) == "23:00-00:00"


class TestSlotArithmetic:
    """Tests for minute arithmetic on slots."""

    def test_midnight_end(self):
        """00:00 as an end time means the end of the day."""
        assert to_minutes(time(0, 0)) == 0
        assert to_minutes(time(0, 0), is_end=True) == 1440

    def test_slot_length(self):
        assert slot_length(time(14, 0), time(15, 0)) == 60
        assert slot_length(time(23, 0), time(0, 0)) == 60
        assert slot_length(time(14, 0), time(16, 30)) == 150

    def test_valid_time_range(self):
        assert is_valid_time_range(time(14, 0), time(15, 0)) is True
        assert is_valid_time_range(time(23, 0), time(0, 0)) is True
        assert is_valid_time_range(time(15, 0), time(14, 0)) is False
        assert is_valid_time_range(time(15, 0), time(15, 0)) is False

    def test_slot_contains_is_half_open(self):
        assert slot_contains(time(14, 0), time(15, 0), time(14, 0)) is True
        assert slot_contains(time(14, 0), time(15, 0), time(14, 59)) is True
        assert slot_contains(time(14, 0), time(15, 0), time(15, 0)) is False
        assert slot_contains(time(23, 0), time(0, 0), time(23, 30)) is True

    def test_slot_has_ended(self):
        day = date(2024, 6, 1)
        assert slot_has_ended(day, time(15, 0), datetime(2024, 6, 1, 14, 30)) is False
        assert slot_has_ended(day, time(15, 0), datetime(2024, 6, 1, 15, 0)) is True
        assert slot_has_ended(day, time(0, 0), datetime(2024, 6, 1, 23, 59)) is False
        assert slot_has_ended(day, time(15, 0), datetime(2024, 6, 2, 9, 0)) is True
        assert slot_has_ended(day, time(15, 0), datetime(2024, 5, 31, 23, 0)) is False

    def test_slot_has_started(self):
        day = date(2024, 6, 1)
        assert slot_has_started(day, time(14, 0), datetime(2024, 6, 1, 13, 59)) is False
        assert slot_has_started(day, time(14, 0), datetime(2024, 6, 1, 14, 0)) is True
        assert slot_has_started(day, time(14, 0), datetime(2024, 5, 31, 20, 0)) is False
