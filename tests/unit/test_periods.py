"""Leaderboard period boundaries."""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from quizarena.errors import ValidationError
from quizarena.leaderboard.periods import ALL_TIME_END, ALL_TIME_START, resolve_period, retention_cutoffs

UTC = timezone.utc
WEDNESDAY = datetime(2024, 5, 15, 14, 30, tzinfo=UTC)


class TestResolvePeriod:
    def test_daily(self):
        start, end = resolve_period("daily", WEDNESDAY)
        assert start == datetime(2024, 5, 15, tzinfo=UTC)
        assert end == datetime(2024, 5, 16, tzinfo=UTC)

    def test_weekly_starts_monday(self):
        start, end = resolve_period("weekly", WEDNESDAY)
        assert start == datetime(2024, 5, 13, tzinfo=UTC)
        assert end == datetime(2024, 5, 20, tzinfo=UTC)

    def test_weekly_on_sunday_night(self):
        start, _ = resolve_period("weekly", datetime(2024, 5, 19, 23, 59, tzinfo=UTC))
        assert start == datetime(2024, 5, 13, tzinfo=UTC)

    def test_monthly(self):
        start, end = resolve_period("monthly", WEDNESDAY)
        assert start == datetime(2024, 5, 1, tzinfo=UTC)
        assert end == datetime(2024, 6, 1, tzinfo=UTC)

    def test_monthly_december_rolls_year(self):
        start, end = resolve_period("monthly", datetime(2024, 12, 31, 23, 0, tzinfo=UTC))
        assert start == datetime(2024, 12, 1, tzinfo=UTC)
        assert end == datetime(2025, 1, 1, tzinfo=UTC)

    def test_all_time(self):
        assert resolve_period("all_time", WEDNESDAY) == (ALL_TIME_START, ALL_TIME_END)

    def test_half_open(self):
        start, end = resolve_period("daily", WEDNESDAY)
        assert resolve_period("daily", end)[0] == end
        assert resolve_period("daily", start)[0] == start

    def test_reference_timezone(self):
        tokyo = ZoneInfo("Asia/Tokyo")
        # 20:00 UTC on the 15th is already the 16th in Tokyo
        start, end = resolve_period("daily", datetime(2024, 5, 15, 20, 0, tzinfo=UTC), tokyo)
        assert start == datetime(2024, 5, 15, 15, 0, tzinfo=UTC)
        assert end - start == timedelta(days=1)

    def test_dst_day_is_23_hours(self):
        new_york = ZoneInfo("America/New_York")
        start, end = resolve_period("daily", datetime(2024, 3, 10, 16, 0, tzinfo=UTC), new_york)
        assert end - start == timedelta(hours=23)

    def test_naive_input_treated_as_utc(self):
        start, _ = resolve_period("daily", datetime(2024, 5, 15, 14, 30))
        assert start == datetime(2024, 5, 15, tzinfo=UTC)

    def test_unknown_window(self):
        with pytest.raises(ValidationError):
            resolve_period("hourly", WEDNESDAY)


class TestRetention:
    def test_cutoffs(self):
        cutoffs = retention_cutoffs(WEDNESDAY)
        assert cutoffs["daily"] == WEDNESDAY - timedelta(days=7)
        assert cutoffs["weekly"] == WEDNESDAY - timedelta(days=30)
        assert cutoffs["monthly"] == WEDNESDAY - timedelta(days=365)
        assert "all_time" not in cutoffs
