"""Tests for period window arithmetic."""

from datetime import datetime, timedelta, timezone

import pytest

from feedback_analytics.core.exceptions import InvalidPeriodError
from feedback_analytics.services.periods import (
    EPOCH,
    PERIOD_KINDS,
    PeriodKind,
    calculate_period_window,
    iter_period_windows,
    previous_period_window,
)
from tests.factories import utc

REFERENCES = [
    utc(2024, 1, 1, 0, 0),
    utc(2024, 2, 29, 23, 59, 59),
    utc(2024, 3, 31, 12, 30),
    utc(2024, 6, 30, 23, 0),
    utc(2024, 12, 31, 23, 59, 59),
    utc(2025, 7, 13, 8, 15),  # a Sunday
    utc(2025, 11, 5, 17, 45),
]


class TestCalculatePeriodWindow:
    def test_daily(self):
        window = calculate_period_window("daily", utc(2025, 3, 14, 15, 9, 26))
        assert window.start == utc(2025, 3, 14)
        assert window.end == utc(2025, 3, 15)

    def test_weekly_starts_on_sunday(self):
        # Wednesday 2025-03-12 -> Sunday 2025-03-09
        window = calculate_period_window("weekly", utc(2025, 3, 12, 10))
        assert window.start == utc(2025, 3, 9)
        assert window.start.weekday() == 6
        assert window.end - window.start == timedelta(days=7)

    def test_weekly_on_sunday_midnight_is_own_start(self):
        window = calculate_period_window("weekly", utc(2025, 3, 9))
        assert window.start == utc(2025, 3, 9)

    def test_monthly(self):
        window = calculate_period_window("monthly", utc(2024, 2, 15))
        assert window.start == utc(2024, 2, 1)
        assert window.end == utc(2024, 3, 1)

    def test_monthly_december_rolls_year(self):
        window = calculate_period_window("monthly", utc(2024, 12, 31, 23))
        assert window.end == utc(2025, 1, 1)

    def test_quarterly(self):
        window = calculate_period_window("quarterly", utc(2025, 8, 20))
        assert window.start == utc(2025, 7, 1)
        assert window.end == utc(2025, 10, 1)

    def test_last_quarter_rolls_year(self):
        window = calculate_period_window("quarterly", utc(2025, 11, 1))
        assert window.start == utc(2025, 10, 1)
        assert window.end == utc(2026, 1, 1)

    def test_yearly(self):
        window = calculate_period_window("yearly", utc(2025, 6, 1))
        assert window.start == utc(2025, 1, 1)
        assert window.end == utc(2026, 1, 1)

    def test_all_time(self):
        reference = utc(2025, 6, 1, 12)
        window = calculate_period_window("all_time", reference)
        assert window.start == EPOCH
        assert window.end == reference

    def test_accepts_enum(self):
        window = calculate_period_window(PeriodKind.DAILY, utc(2025, 1, 2, 3))
        assert window.kind is PeriodKind.DAILY

    def test_naive_reference_is_utc(self):
        window = calculate_period_window("daily", datetime(2025, 3, 14, 23, 30))
        assert window.start == utc(2025, 3, 14)
        assert window.start.tzinfo is not None

    def test_aware_reference_converted_to_utc(self):
        # 01:30 at UTC+5 is 20:30 the previous day in UTC
        plus_five = timezone(timedelta(hours=5))
        window = calculate_period_window("daily", datetime(2025, 3, 15, 1, 30, tzinfo=plus_five))
        assert window.start == utc(2025, 3, 14)

    @pytest.mark.parametrize("period", ["hourly", "", "Monthly", "all-time"])
    def test_invalid_period(self, period):
        with pytest.raises(InvalidPeriodError) as exc_info:
            calculate_period_window(period, utc(2025, 1, 1))
        assert exc_info.value.period == period

    @pytest.mark.parametrize("period", [k for k in PERIOD_KINDS if k != "all_time"])
    @pytest.mark.parametrize("reference", REFERENCES)
    def test_reference_inside_window(self, period, reference):
        window = calculate_period_window(period, reference)
        assert window.start <= reference < window.end
        assert window.contains(reference)
        assert not window.contains(window.end)

    @pytest.mark.parametrize("reference", REFERENCES)
    def test_window_lengths(self, reference):
        assert calculate_period_window("daily", reference).end - calculate_period_window(
            "daily", reference
        ).start == timedelta(days=1)
        weekly = calculate_period_window("weekly", reference)
        assert weekly.end - weekly.start == timedelta(days=7)
        monthly = calculate_period_window("monthly", reference)
        assert 28 <= (monthly.end - monthly.start).days <= 31
        quarterly = calculate_period_window("quarterly", reference)
        assert 90 <= (quarterly.end - quarterly.start).days <= 92
        yearly = calculate_period_window("yearly", reference)
        assert (yearly.end - yearly.start).days in (365, 366)


class TestAdjacentWindows:
    @pytest.mark.parametrize("period", ["daily", "weekly", "monthly", "quarterly", "yearly"])
    def test_previous_window_is_adjacent(self, period):
        window = calculate_period_window(period, utc(2025, 3, 1))
        previous = previous_period_window(window)
        assert previous is not None
        assert previous.end == window.start
        assert previous.kind == window.kind

    def test_all_time_has_no_previous(self):
        assert previous_period_window(calculate_period_window("all_time", utc(2025, 1, 1))) is None

    def test_iter_windows_covers_range_without_gaps(self):
        windows = list(iter_period_windows("daily", utc(2025, 1, 30, 12), utc(2025, 2, 2, 6)))
        assert [w.start for w in windows] == [
            utc(2025, 1, 30),
            utc(2025, 1, 31),
            utc(2025, 2, 1),
            utc(2025, 2, 2),
        ]
        for earlier, later in zip(windows, windows[1:]):
            assert earlier.end == later.start

    def test_iter_windows_single_when_range_inside_one_window(self):
        windows = list(iter_period_windows("monthly", utc(2025, 5, 2), utc(2025, 5, 20)))
        assert len(windows) == 1
        assert windows[0].start == utc(2025, 5, 1)

    def test_iter_windows_end_on_boundary_is_exclusive(self):
        windows = list(iter_period_windows("monthly", utc(2025, 4, 10), utc(2025, 5, 1)))
        assert [w.start for w in windows] == [utc(2025, 4, 1)]

    def test_iter_all_time_yields_single_window(self):
        windows = list(iter_period_windows("all_time", utc(2020, 1, 1), utc(2025, 1, 1)))
        assert len(windows) == 1
        assert windows[0].end == utc(2025, 1, 1)
