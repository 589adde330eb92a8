"""Leaderboard period boundaries.

Periods are half-open ``[start, end)`` intervals computed in the reference
timezone and returned in UTC:

- daily: local midnight to next midnight
- weekly: Monday 00:00 (ISO week) to the next Monday
- monthly: the 1st 00:00 to the 1st of next month
- all_time: 2000-01-01 to 2100-01-01
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from quizarena.errors import ValidationError

WINDOW_TYPES = ("daily", "weekly", "monthly", "all_time")

ALL_TIME_START = datetime(2000, 1, 1, tzinfo=timezone.utc)
ALL_TIME_END = datetime(2100, 1, 1, tzinfo=timezone.utc)

# Rows whose period ended longer ago than this are deleted by cleanup.
RETENTION: dict[str, timedelta] = {
    "daily": timedelta(days=7),
    "weekly": timedelta(days=30),
    "monthly": timedelta(days=365),
}


def validate_window(window_type: str) -> str:
    if window_type not in WINDOW_TYPES:
        raise ValidationError(f"Invalid leaderboard window: {window_type}")
    return window_type


def _local(now: datetime, tz: ZoneInfo) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(tz)


def resolve_period(window_type: str, now: datetime, tz: ZoneInfo | None = None) -> tuple[datetime, datetime]:
    """Return the UTC ``[start, end)`` of the period containing ``now``."""
    validate_window(window_type)
    if window_type == "all_time":
        return ALL_TIME_START, ALL_TIME_END

    tz = tz or ZoneInfo("UTC")
    # Wall-clock arithmetic on naive values, zone re-attached at the end so DST resolves.
    day = _local(now, tz).replace(tzinfo=None, hour=0, minute=0, second=0, microsecond=0)

    if window_type == "daily":
        start, end = day, day + timedelta(days=1)
    elif window_type == "weekly":
        start = day - timedelta(days=day.weekday())
        end = start + timedelta(days=7)
    else:
        start = day.replace(day=1)
        if start.month == 12:
            end = start.replace(year=start.year + 1, month=1)
        else:
            end = start.replace(month=start.month + 1)

    return (
        start.replace(tzinfo=tz).astimezone(timezone.utc),
        end.replace(tzinfo=tz).astimezone(timezone.utc),
    )


def retention_cutoffs(now: datetime) -> dict[str, datetime]:
    """Cutoff per window type for cleanup_old_entries."""
    return {window: now - age for window, age in RETENTION.items()}


def local_time(now: datetime, tz_name: str) -> datetime:
    return _local(now, ZoneInfo(tz_name))
