"""Tests for period window calculation."""

import pytest
from datetime import datetime, UTC, timedelta, timezone

from billguard.periods import (
    Period,
    calculate_period_dates,
    first_of_next_month,
    format_period,
    get_period_days_remaining,
    resolve_now,
)


# A Wednesday
NOW = datetime(2026, 10, 14, 15, 30, tzinfo=UTC)


class TestCalculatePeriodDates:
    """Test window bounds for each period."""

    def test_daily_window(self):
        window = calculate_period_dates(Period.DAILY, NOW)

        assert window.start == datetime(2026, 10, 14, tzinfo=UTC)
        assert window.reset == datetime(2026, 10, 15, tzinfo=UTC)

    def test_weekly_window_starts_on_sunday(self):
        window = calculate_period_dates(Period.WEEKLY, NOW)

        assert window.start == datetime(2026, 10, 11, tzinfo=UTC)
        assert window.start.weekday() == 6  # Sunday
        assert window.reset == window.start + timedelta(days=7)

    def test_weekly_window_on_a_sunday(self):
        sunday = datetime(2026, 10, 11, 8, 0, tzinfo=UTC)

        window = calculate_period_dates(Period.WEEKLY, sunday)

        assert window.start == datetime(2026, 10, 11, tzinfo=UTC)
        assert window.reset == datetime(2026, 10, 18, tzinfo=UTC)

    def test_weekly_window_on_a_saturday(self):
        saturday = datetime(2026, 10, 17, 23, 59, tzinfo=UTC)

        window = calculate_period_dates(Period.WEEKLY, saturday)

        assert window.start == datetime(2026, 10, 11, tzinfo=UTC)

    def test_monthly_window(self):
        window = calculate_period_dates(Period.MONTHLY, NOW)

        assert window.start == datetime(2026, 10, 1, tzinfo=UTC)
        assert window.reset == datetime(2026, 11, 1, tzinfo=UTC)

    def test_monthly_window_in_december_rolls_year(self):
        window = calculate_period_dates(Period.MONTHLY, datetime(2026, 12, 31, 22, tzinfo=UTC))

        assert window.start == datetime(2026, 12, 1, tzinfo=UTC)
        assert window.reset == datetime(2027, 1, 1, tzinfo=UTC)

    def test_monthly_window_handles_leap_february(self):
        window = calculate_period_dates(Period.MONTHLY, datetime(2028, 2, 29, 12, tzinfo=UTC))

        assert window.start == datetime(2028, 2, 1, tzinfo=UTC)
        assert window.reset == datetime(2028, 3, 1, tzinfo=UTC)

    def test_yearly_window(self):
        window = calculate_period_dates(Period.YEARLY, NOW)

        assert window.start == datetime(2026, 1, 1, tzinfo=UTC)
        assert window.reset == datetime(2027, 1, 1, tzinfo=UTC)

    def test_accepts_period_string(self):
        assert calculate_period_dates("daily", NOW) == calculate_period_dates(Period.DAILY, NOW)

    def test_unknown_period_rejected(self):
        with pytest.raises(ValueError):
            calculate_period_dates("hourly", NOW)

    @pytest.mark.parametrize("period", list(Period))
    @pytest.mark.parametrize("now", [
        NOW,
        datetime(2026, 1, 1, 0, 0, tzinfo=UTC),
        datetime(2026, 12, 31, 23, 59, 59, tzinfo=UTC),
        datetime(2027, 3, 7, 0, 0, tzinfo=UTC),
    ])
    def test_window_contains_now(self, period, now):
        window = calculate_period_dates(period, now)

        assert window.start <= now < window.reset

    def test_window_uses_timezone_of_now(self):
        tz = timezone(timedelta(hours=-5))
        local = datetime(2026, 10, 14, 22, 0, tzinfo=tz)

        window = calculate_period_dates(Period.DAILY, local)

        assert window.start == datetime(2026, 10, 14, tzinfo=tz)
        assert window.start.tzinfo == tz


class TestHelpers:
    """Test period helpers."""

    def test_first_of_next_month(self):
        assert first_of_next_month(NOW) == datetime(2026, 11, 1, tzinfo=UTC)
        assert first_of_next_month(datetime(2026, 12, 5, tzinfo=UTC)) == datetime(2027, 1, 1, tzinfo=UTC)

    def test_format_period(self):
        assert format_period(Period.MONTHLY) == "Monthly"
        assert format_period("weekly") == "Weekly"

    def test_days_remaining_rounds_up(self):
        reset = NOW + timedelta(days=1, hours=12)

        assert get_period_days_remaining(reset, NOW) == 2

    def test_days_remaining_never_negative(self):
        assert get_period_days_remaining(NOW - timedelta(days=3), NOW) == 0

    def test_naive_now_is_read_as_utc(self):
        naive = datetime(2026, 10, 14, 15, 30)

        assert resolve_now(naive) == NOW
        assert calculate_period_dates(Period.DAILY, naive).start == datetime(2026, 10, 14, tzinfo=UTC)
        assert get_period_days_remaining(datetime(2026, 10, 16, tzinfo=UTC), naive) == 2
