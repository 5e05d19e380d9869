"""
Unit tests for departures.service_day, pure functions only.
"""

from datetime import datetime

from departures.service_day import (
    format_clock,
    format_yyyymmdd,
    hms_to_seconds,
    local_midnight,
    seconds_since_midnight,
    service_day_start,
    weekday_name,
)


class TestServiceDayStart:
    def test_after_start_hour(self):
        assert service_day_start(datetime(2026, 2, 9, 14, 0)) == datetime(2026, 2, 9, 3, 0)

    def test_exactly_start_hour(self):
        assert service_day_start(datetime(2026, 2, 9, 3, 0)) == datetime(2026, 2, 9, 3, 0)

    def test_before_start_hour_is_previous_day(self):
        assert service_day_start(datetime(2026, 2, 10, 2, 59)) == datetime(2026, 2, 9, 3, 0)

    def test_custom_start_hour(self):
        assert service_day_start(datetime(2026, 2, 10, 4, 30), start_hour=5) == datetime(2026, 2, 9, 5, 0)

    def test_month_boundary(self):
        assert service_day_start(datetime(2026, 3, 1, 1, 0)) == datetime(2026, 2, 28, 3, 0)


class TestCalendarHelpers:
    def test_format_yyyymmdd(self):
        assert format_yyyymmdd(datetime(2026, 2, 9, 14, 0)) == "20260209"

    def test_weekday_name(self):
        # 2026-02-09 is a Monday, 2026-02-15 a Sunday
        assert weekday_name(datetime(2026, 2, 9)) == "monday"
        assert weekday_name(datetime(2026, 2, 15)) == "sunday"


class TestHmsToSeconds:
    def test_standard(self):
        assert hms_to_seconds("14:48:30") == 53310

    def test_past_midnight(self):
        assert hms_to_seconds("25:10:00") == 90600

    def test_single_digit_hour(self):
        assert hms_to_seconds("9:05:00") == 32700

    def test_without_seconds(self):
        assert hms_to_seconds("08:15") == 29700

    def test_whitespace(self):
        assert hms_to_seconds(" 08:00:00 ") == 28800

    def test_unparseable(self):
        assert hms_to_seconds("") == 0
        assert hms_to_seconds("soon") == 0
        assert hms_to_seconds(None) == 0


class TestClock:
    def test_seconds_since_midnight(self):
        assert seconds_since_midnight(datetime(2026, 2, 9, 1, 2, 3)) == 3723

    def test_local_midnight(self):
        assert local_midnight(datetime(2026, 2, 9, 14, 30, 12, 500)) == datetime(2026, 2, 9)

    def test_format_clock(self):
        assert format_clock(53280) == "14:48"

    def test_format_clock_wraps(self):
        assert format_clock(90600) == "01:10"

    def test_format_clock_drops_seconds(self):
        assert format_clock(53339) == "14:48"
