# eventseries/core/series/timeutil.py

"""Local-date/time to UTC conversion for series instances."""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Tuple
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

from .exceptions import SeriesValidationError

_TIME_OF_DAY = re.compile(r"^(?P<h>\d{1,2}):(?P<m>\d{2})(?::(?P<s>\d{2}))?$")


def normalize_time_of_day(value: str) -> str:
    """``"19:00"`` -> ``"19:00:00"``; rejects anything that is not a wall-clock time."""
    match = _TIME_OF_DAY.match((value or "").strip())
    if not match:
        raise SeriesValidationError(f"Invalid time of day: {value!r}")
    hours, minutes, seconds = int(match["h"]), int(match["m"]), int(match["s"] or 0)
    if hours > 23 or minutes > 59 or seconds > 59:
        raise SeriesValidationError(f"Invalid time of day: {value!r}")
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def parse_time_of_day(value: str) -> time:
    return time.fromisoformat(normalize_time_of_day(value))


def ensure_utc(value: datetime) -> datetime:
    # SQLite отдаёт naive datetime; всё, что хранится, - в UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_to_utc(day: date, time_of_day: str, zone: ZoneInfo) -> datetime:
    """
    Combine a local calendar date and wall-clock time in ``zone`` into a UTC instant.

    The offset is looked up for that specific date, so historical and DST
    changes are honoured.
    """
    local = datetime.combine(day, parse_time_of_day(time_of_day), tzinfo=zone)
    return local.astimezone(timezone.utc)


def occurrence_bounds(
    day: date, time_of_day: str, duration_minutes: int, zone: ZoneInfo
) -> Tuple[datetime, datetime]:
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")
    starts_at = local_to_utc(day, time_of_day, zone)
    return starts_at, starts_at + timedelta(minutes=duration_minutes)


def local_today(now: datetime, zone: ZoneInfo) -> date:
    return ensure_utc(now).astimezone(zone).date()


def generation_horizon(now: datetime, months_ahead: int, zone: ZoneInfo) -> date:
    """Last local date (inclusive) that should be materialized at ``now``."""
    return local_today(now, zone) + relativedelta(months=months_ahead)


def watermark_for_horizon(horizon: date, zone: ZoneInfo) -> datetime:
    """UTC instant of local midnight that starts the day after ``horizon``."""
    next_day = horizon + timedelta(days=1)
    return datetime.combine(next_day, time.min, tzinfo=zone).astimezone(timezone.utc)


def window_start_for_watermark(watermark: datetime, zone: ZoneInfo) -> date:
    """First local date not yet covered by ``watermark``."""
    return ensure_utc(watermark).astimezone(zone).date()


__all__ = [
    "normalize_time_of_day",
    "parse_time_of_day",
    "ensure_utc",
    "local_to_utc",
    "occurrence_bounds",
    "local_today",
    "generation_horizon",
    "watermark_for_horizon",
    "window_start_for_watermark",
]
