"""Tests for calendar-quarter window arithmetic."""

from datetime import date, datetime, timedelta, timezone

import pytest

from usage_engine.services.usage.quarters import (
    format_api_date,
    lookback_window,
    quarter_range,
    trailing_quarters,
)

NOW = date(2026, 2, 15)


class TestQuarterRange:
    """Tests for quarter_range."""

    def test_current_quarter_clamped_to_today(self):
        q = quarter_range(0, NOW)

        assert q.label == "Q1 2026"
        assert q.start_date == date(2026, 1, 1)
        assert q.end_date == date(2026, 2, 15)
        assert q.display_label(0) == "Q1 2026 (to date)"

    def test_previous_quarter_crosses_year(self):
        q = quarter_range(-1, NOW)

        assert q.label == "Q4 2025"
        assert q.start_date == date(2025, 10, 1)
        assert q.end_date == date(2025, 12, 31)
        assert q.display_label(-1) == "Q4 2025"

    def test_five_back_crosses_two_years(self):
        q = quarter_range(-5, NOW)

        assert q.label == "Q4 2024"
        assert q.start_date == date(2024, 10, 1)
        assert q.end_date == date(2024, 12, 31)

    def test_future_quarter_not_clamped(self):
        q = quarter_range(1, NOW)

        assert q.label == "Q2 2026"
        assert q.start_date == date(2026, 4, 1)
        assert q.end_date == date(2026, 6, 30)

    def test_large_offsets_normalize(self):
        assert quarter_range(-9, NOW).label == "Q4 2023"
        assert quarter_range(7, NOW).label == "Q4 2027"

    def test_last_day_of_quarter_is_not_clamped_earlier(self):
        q = quarter_range(0, date(2026, 3, 31))
        assert q.end_date == date(2026, 3, 31)

    def test_accepts_datetime(self):
        q = quarter_range(0, datetime(2026, 8, 3, 23, 59, tzinfo=timezone.utc))

        assert q.label == "Q3 2026"
        assert q.end_date == date(2026, 8, 3)

    def test_adjacent_quarters_never_overlap(self):
        ranges = [quarter_range(offset, NOW) for offset in range(-12, 1)]

        for earlier, later in zip(ranges, ranges[1:]):
            assert earlier.end_date + timedelta(days=1) == later.start_date

    def test_default_now_is_current_quarter(self):
        q = quarter_range()
        today = datetime.now(timezone.utc).date()

        assert q.start_date <= q.end_date
        assert abs((q.end_date - today).days) <= 1


class TestTrailingQuarters:
    """Tests for trailing_quarters."""

    def test_three_quarters_newest_first(self):
        windows = trailing_quarters(3, NOW)

        assert [offset for offset, _ in windows] == [0, -1, -2]
        assert [q.label for _, q in windows] == ["Q1 2026", "Q4 2025", "Q3 2025"]

    def test_count_must_be_positive(self):
        with pytest.raises(ValueError):
            trailing_quarters(0, NOW)


class TestDates:
    """Tests for date helpers."""

    def test_format_api_date(self):
        assert format_api_date(date(2026, 1, 5)) == "20260105"

    def test_lookback_window(self):
        start, end = lookback_window(30, NOW)

        assert end == NOW
        assert start == date(2026, 1, 16)

    def test_lookback_window_requires_positive_days(self):
        with pytest.raises(ValueError):
            lookback_window(0, NOW)
