# tests/test_timeutil.py
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from eventseries.core.series.exceptions import SeriesValidationError
from eventseries.core.series.timeutil import (
    ensure_utc,
    generation_horizon,
    local_to_utc,
    normalize_time_of_day,
    occurrence_bounds,
    watermark_for_horizon,
    window_start_for_watermark,
)

HCM = ZoneInfo("Asia/Ho_Chi_Minh")
NEW_YORK = ZoneInfo("America/New_York")


@pytest.mark.parametrize("raw, expected", [("19:00", "19:00:00"), ("7:05", "07:05:00"), ("23:59:59", "23:59:59")])
def test_normalize_time_of_day(raw, expected):
    assert normalize_time_of_day(raw) == expected


@pytest.mark.parametrize("raw", ["24:00", "19:60", "19", "ab:cd", "", "19:00:00:00"])
def test_invalid_time_of_day(raw):
    with pytest.raises(SeriesValidationError):
        normalize_time_of_day(raw)


def test_local_evening_in_ho_chi_minh_is_noon_utc():
    assert local_to_utc(date(2025, 1, 14), "19:00:00", HCM) == datetime(2025, 1, 14, 12, 0, tzinfo=timezone.utc)


def test_offset_is_resolved_per_date():
    # Переход на летнее время в Нью-Йорке: 9 марта 2025
    before = local_to_utc(date(2025, 3, 8), "19:00", NEW_YORK)
    after = local_to_utc(date(2025, 3, 10), "19:00", NEW_YORK)
    assert before == datetime(2025, 3, 9, 0, 0, tzinfo=timezone.utc)
    assert after == datetime(2025, 3, 10, 23, 0, tzinfo=timezone.utc)
    assert after - before == timedelta(days=2) - timedelta(hours=1)


def test_historical_offset_in_operational_zone():
    # До июня 1975 Сайгон жил по UTC+8
    assert local_to_utc(date(1970, 1, 6), "19:00:00", HCM) == datetime(1970, 1, 6, 11, 0, tzinfo=timezone.utc)
    assert local_to_utc(date(1976, 1, 6), "19:00:00", HCM) == datetime(1976, 1, 6, 12, 0, tzinfo=timezone.utc)


def test_occurrence_bounds():
    starts_at, ends_at = occurrence_bounds(date(2025, 1, 14), "19:00:00", 120, HCM)
    assert starts_at == datetime(2025, 1, 14, 12, 0, tzinfo=timezone.utc)
    assert ends_at == datetime(2025, 1, 14, 14, 0, tzinfo=timezone.utc)
    with pytest.raises(ValueError):
        occurrence_bounds(date(2025, 1, 14), "19:00:00", 0, HCM)


def test_ensure_utc_treats_naive_as_utc():
    naive = datetime(2025, 1, 1, 12, 0)
    assert ensure_utc(naive) == datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
    local = datetime(2025, 1, 1, 19, 0, tzinfo=HCM)
    assert ensure_utc(local) == datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def test_horizon_uses_local_date():
    # 18:00 UTC 9 января - уже 10 января в Хошимине
    now = datetime(2025, 1, 9, 18, 0, tzinfo=timezone.utc)
    assert generation_horizon(now, 6, HCM) == date(2025, 7, 10)


def test_horizon_clamps_month_end():
    now = datetime(2025, 8, 31, 3, 0, tzinfo=timezone.utc)
    assert generation_horizon(now, 6, HCM) == date(2026, 2, 28)


def test_watermark_partitions_dates():
    watermark = watermark_for_horizon(date(2025, 7, 10), HCM)
    assert watermark == datetime(2025, 7, 10, 17, 0, tzinfo=timezone.utc)
    # Следующее окно начинается строго после горизонта
    assert window_start_for_watermark(watermark, HCM) == date(2025, 7, 11)
    assert window_start_for_watermark(watermark.replace(tzinfo=None), HCM) == date(2025, 7, 11)
