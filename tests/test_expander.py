# tests/test_expander.py
from datetime import date, timedelta

import pytest

from eventseries.core.recurrence import (
    RecurrenceSpec,
    expand_occurrences,
    is_occurrence_date,
    occurrence_count,
    upcoming_occurrences,
)
from eventseries.core.series.exceptions import ExpansionError, SeriesValidationError

HORIZON = date(2025, 7, 10)


def weekly_tuesday(**kwargs) -> RecurrenceSpec:
    return RecurrenceSpec(rule="FREQ=WEEKLY;BYDAY=TU", anchor_date=date(2025, 1, 14), **kwargs)


def test_weekly_series_over_six_months():
    dates = expand_occurrences(weekly_tuesday(), date(2025, 1, 14), HORIZON)
    assert len(dates) == 26
    assert dates[0] == date(2025, 1, 14)
    assert dates[-1] == date(2025, 7, 8)
    assert all(d.weekday() == 1 for d in dates)


def test_results_are_sorted_and_unique():
    spec = RecurrenceSpec(rule="FREQ=WEEKLY;BYDAY=MO,WE,FR", anchor_date=date(2025, 1, 6))
    dates = expand_occurrences(spec, date(2025, 1, 1), HORIZON)
    assert dates == sorted(dates)
    assert len(dates) == len(set(dates))


def test_split_windows_keep_phase():
    spec = RecurrenceSpec(rule="FREQ=WEEKLY;INTERVAL=2;BYDAY=TU", anchor_date=date(2025, 1, 14))
    whole = expand_occurrences(spec, date(2025, 1, 14), HORIZON)
    first = expand_occurrences(spec, date(2025, 1, 14), date(2025, 3, 31))
    second = expand_occurrences(spec, date(2025, 4, 1), HORIZON)

    assert first + second == whole
    # 1 апреля - тоже вторник, но не в фазе с якорем
    assert second[0] == date(2025, 4, 8)
    assert all((d - spec.anchor_date).days % 14 == 0 for d in whole)


def test_count_is_counted_from_anchor():
    spec = RecurrenceSpec(rule="FREQ=DAILY;COUNT=3", anchor_date=date(2025, 3, 1))
    assert expand_occurrences(spec, date(2025, 3, 1), date(2025, 12, 31)) == [
        date(2025, 3, 1), date(2025, 3, 2), date(2025, 3, 3),
    ]
    assert expand_occurrences(spec, date(2025, 3, 2), date(2025, 12, 31)) == [
        date(2025, 3, 2), date(2025, 3, 3),
    ]


def test_excluded_dates_do_not_consume_count():
    spec = RecurrenceSpec(rule="FREQ=DAILY", anchor_date=date(2025, 3, 1), count=3)
    dates = expand_occurrences(spec, date(2025, 3, 1), date(2025, 3, 31), exclude_dates=[date(2025, 3, 2)])
    assert dates == [date(2025, 3, 1), date(2025, 3, 3), date(2025, 3, 4)]
    # Окно после исключения продолжает тот же счёт
    later = expand_occurrences(spec, date(2025, 3, 4), date(2025, 3, 31), exclude_dates=[date(2025, 3, 2)])
    assert later == [date(2025, 3, 4)]


def test_exclusions_without_count():
    dates = expand_occurrences(
        weekly_tuesday(), date(2025, 1, 14), date(2025, 2, 11), exclude_dates={date(2025, 1, 28)}
    )
    assert dates == [date(2025, 1, 14), date(2025, 1, 21), date(2025, 2, 4), date(2025, 2, 11)]


def test_until_is_inclusive():
    spec = RecurrenceSpec(rule="FREQ=DAILY", anchor_date=date(2025, 3, 1), until=date(2025, 3, 3))
    assert expand_occurrences(spec, date(2025, 3, 1), date(2025, 3, 10))[-1] == date(2025, 3, 3)
    assert expand_occurrences(spec, date(2025, 3, 4), date(2025, 3, 10)) == []


def test_until_from_rule_string():
    spec = RecurrenceSpec(rule="FREQ=WEEKLY;BYDAY=TU;UNTIL=20250128", anchor_date=date(2025, 1, 14))
    assert expand_occurrences(spec, date(2025, 1, 1), HORIZON) == [
        date(2025, 1, 14), date(2025, 1, 21), date(2025, 1, 28),
    ]


def test_month_end_is_clamped():
    expected = [date(2025, 1, 31), date(2025, 2, 28), date(2025, 3, 31), date(2025, 4, 30), date(2025, 5, 31)]
    for rule in ("FREQ=MONTHLY;BYMONTHDAY=31", "FREQ=MONTHLY"):
        spec = RecurrenceSpec(rule=rule, anchor_date=date(2025, 1, 31))
        assert expand_occurrences(spec, date(2025, 1, 1), date(2025, 5, 31)) == expected


def test_month_day_clamped_in_leap_year():
    spec = RecurrenceSpec(rule="FREQ=MONTHLY;BYMONTHDAY=30", anchor_date=date(2024, 1, 30))
    assert expand_occurrences(spec, date(2024, 1, 1), date(2024, 3, 31)) == [
        date(2024, 1, 30), date(2024, 2, 29), date(2024, 3, 30),
    ]


def test_last_weekday_of_month():
    spec = RecurrenceSpec(rule="FREQ=MONTHLY;BYDAY=-1FR", anchor_date=date(2025, 1, 31))
    assert expand_occurrences(spec, date(2025, 1, 1), date(2025, 4, 30)) == [
        date(2025, 1, 31), date(2025, 2, 28), date(2025, 3, 28), date(2025, 4, 25),
    ]


def test_anchor_is_first_even_if_it_does_not_match():
    spec = RecurrenceSpec(rule="FREQ=WEEKLY;BYDAY=TU", anchor_date=date(2025, 1, 15))  # среда
    assert expand_occurrences(spec, date(2025, 1, 1), date(2025, 1, 31))[:3] == [
        date(2025, 1, 15), date(2025, 1, 21), date(2025, 1, 28),
    ]


def test_nothing_before_anchor():
    spec = weekly_tuesday()
    assert expand_occurrences(spec, date(2024, 12, 1), date(2025, 1, 13)) == []
    assert expand_occurrences(spec, date(2024, 12, 1), date(2025, 1, 14)) == [date(2025, 1, 14)]


@pytest.mark.parametrize(
    "rule",
    [
        "FREQ=WEEKLY;BYDAY=2TU",
        "FREQ=WEEKLY;BYMONTHDAY=5",
        "FREQ=DAILY;BYDAY=MO",
        "FREQ=YEARLY;BYMONTHDAY=1",
        "FREQ=MONTHLY;BYDAY=TU",
        "FREQ=MONTHLY;BYDAY=1MO,3MO",
        "FREQ=MONTHLY;BYDAY=1MO;BYMONTHDAY=5",
    ],
)
def test_unsupported_combinations(rule):
    spec = RecurrenceSpec(rule=rule, anchor_date=date(2025, 1, 6))
    with pytest.raises(ExpansionError):
        expand_occurrences(spec, date(2025, 1, 1), HORIZON)


def test_conflicting_end_conditions():
    with pytest.raises(SeriesValidationError):
        expand_occurrences(
            RecurrenceSpec(rule="FREQ=DAILY;COUNT=4", anchor_date=date(2025, 1, 1), until=date(2025, 2, 1)),
            date(2025, 1, 1), HORIZON,
        )
    with pytest.raises(SeriesValidationError):
        expand_occurrences(
            RecurrenceSpec(rule="FREQ=DAILY;COUNT=4", anchor_date=date(2025, 1, 1), count=3),
            date(2025, 1, 1), HORIZON,
        )


def test_iteration_cap():
    spec = RecurrenceSpec(rule="FREQ=DAILY", anchor_date=date(2025, 1, 1))
    with pytest.raises(ExpansionError):
        expand_occurrences(spec, date(2025, 1, 1), date(2030, 1, 1), max_iterations=10)


def test_helpers():
    spec = weekly_tuesday()
    assert upcoming_occurrences(spec, date(2025, 1, 20), limit=3) == [
        date(2025, 1, 21), date(2025, 1, 28), date(2025, 2, 4),
    ]
    assert is_occurrence_date(spec, date(2025, 2, 4))
    assert not is_occurrence_date(spec, date(2025, 2, 5))
    assert occurrence_count(
        RecurrenceSpec(rule="FREQ=DAILY;COUNT=3", anchor_date=date(2025, 3, 1)),
        date(2025, 3, 1) + timedelta(days=30),
    ) == 3
