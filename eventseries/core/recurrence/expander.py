# eventseries/core/recurrence/expander.py
"""
Date generation for recurring events.

Expands a rule into concrete local dates. The walk always starts at the
anchor (first occurrence), so the cadence stays locked to the anchor no
matter which window is requested.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import Iterable, Iterator, List, Optional, Tuple

from dateutil.relativedelta import relativedelta
from dateutil.rrule import DAILY, MONTHLY, WEEKLY, YEARLY, rrule, weekday
from pydantic import BaseModel, ConfigDict, Field

from eventseries.core.series.exceptions import ExpansionError, SeriesValidationError
from .rules import WEEKDAY_CODES, RecurrenceRule, parse_rule

log = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 5000

_FREQ_MAP = {"DAILY": DAILY, "WEEKLY": WEEKLY, "MONTHLY": MONTHLY, "YEARLY": YEARLY}


class RecurrenceSpec(BaseModel):
    """
    Как повторяется серия: правило, дата первого вхождения и
    необязательное условие окончания (``until`` включительно или ``count``).
    """
    model_config = ConfigDict(frozen=True)

    rule: str
    anchor_date: date
    until: Optional[date] = None
    count: Optional[int] = Field(None, ge=1)


def _weekday(code: str, position: Optional[int] = None) -> weekday:
    return weekday(WEEKDAY_CODES.index(code), position)


def resolve_end_condition(parsed: RecurrenceRule, spec: RecurrenceSpec) -> Tuple[Optional[date], Optional[int]]:
    """
    Сводит UNTIL/COUNT из строки правила и из спецификации в одну границу.

    Raises:
        SeriesValidationError: заданы обе границы или одна и та же граница
            противоречит сама себе.
    """
    if spec.until is not None and parsed.until is not None and spec.until != parsed.until:
        raise SeriesValidationError("Conflicting UNTIL in rule and end condition")
    if spec.count is not None and parsed.count is not None and spec.count != parsed.count:
        raise SeriesValidationError("Conflicting COUNT in rule and end condition")

    until = spec.until or parsed.until
    count = spec.count or parsed.count
    if until is not None and count is not None:
        raise SeriesValidationError("A series can end on a date or after a count, not both")
    return until, count


def _clamped_month_day(day: int) -> dict:
    # 31 -> последний день короткого месяца, без дрейфа фазы
    if day <= 28:
        return {"bymonthday": day}
    return {"bymonthday": tuple(range(28, day + 1)), "bysetpos": -1}


def build_dateutil_rule(parsed: RecurrenceRule, anchor: date, until: Optional[date]) -> rrule:
    """
    Converts a parsed rule into a ``dateutil`` rrule anchored at ``anchor``.

    Raises:
        ExpansionError: the rule uses a combination this generator does not support.
    """
    positional = [token for token in parsed.by_day if token.position is not None]
    plain = parsed.week_days

    kwargs: dict = {
        "dtstart": datetime.combine(anchor, time.min),
        "interval": parsed.interval,
    }
    if until is not None:
        kwargs["until"] = datetime.combine(until, time.min)

    if parsed.frequency == "WEEKLY":
        if positional:
            raise ExpansionError("Positional BYDAY is only supported for MONTHLY rules")
        if parsed.month_day is not None:
            raise ExpansionError("BYMONTHDAY is only supported for MONTHLY rules")
        if plain:
            kwargs["byweekday"] = tuple(_weekday(code) for code in plain)
        kwargs["wkst"] = _weekday(parsed.week_start or "SU")

    elif parsed.frequency == "MONTHLY":
        if plain:
            raise ExpansionError("BYDAY without a position is only supported for WEEKLY rules")
        if len(positional) > 1:
            raise ExpansionError("Only one positional BYDAY is supported")
        if positional and parsed.month_day is not None:
            raise ExpansionError("BYDAY and BYMONTHDAY cannot be combined")
        if positional:
            token = positional[0]
            kwargs["byweekday"] = _weekday(token.day, token.position)
        else:
            kwargs.update(_clamped_month_day(parsed.month_day or anchor.day))

    else:  # DAILY / YEARLY
        if parsed.by_day:
            raise ExpansionError(f"BYDAY is not supported for {parsed.frequency} rules")
        if parsed.month_day is not None:
            raise ExpansionError("BYMONTHDAY is only supported for MONTHLY rules")

    return rrule(_FREQ_MAP[parsed.frequency], **kwargs)


def _walk(rule: rrule, anchor: date) -> Iterator[date]:
    # Якорь - всегда первое вхождение, даже если не совпадает с BYDAY
    yield anchor
    for value in rule:
        current = value.date()
        if current > anchor:
            yield current


def expand_occurrences(
    spec: RecurrenceSpec,
    window_start: date,
    window_end: date,
    exclude_dates: Iterable[date] = (),
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> List[date]:
    """
    Возвращает отсортированные даты вхождений в окне
    ``[max(anchor, window_start), min(until, window_end)]`` (обе границы включительно).

    COUNT считается от якоря, включая даты до окна; исключённые даты
    в COUNT не входят.

    Raises:
        InvalidRuleError: правило структурно некорректно.
        SeriesValidationError: противоречивое условие окончания.
        ExpansionError: неподдерживаемая комбинация или превышен лимит итераций.
    """
    parsed = parse_rule(spec.rule)
    until, count = resolve_end_condition(parsed, spec)
    anchor = spec.anchor_date

    start = max(anchor, window_start)
    end = window_end if until is None else min(until, window_end)
    rule = build_dateutil_rule(parsed, anchor, end)
    if start > end:
        return []

    excluded = set(exclude_dates)
    occurrences: List[date] = []

    if count is None and start > anchor:
        # Без COUNT можно сразу перейти к окну: фаза задана dtstart
        candidates: Iterable[date] = (
            value.date() for value in rule.xafter(datetime.combine(start, time.min), inc=True)
        )
    else:
        candidates = _walk(rule, anchor)

    counted = 0
    for index, current in enumerate(candidates):
        if index >= max_iterations:
            raise ExpansionError(f"Rule {spec.rule!r} exceeds {max_iterations} iterations")
        if current > end:
            break
        if current in excluded:
            continue
        # исключённая дата не расходует COUNT: серия продлевается
        if count is not None:
            if counted >= count:
                break
            counted += 1
        if current < start:
            continue
        occurrences.append(current)

    log.debug(
        "Expanded %r from %s: %d occurrences in [%s, %s]",
        spec.rule, anchor, len(occurrences), start, end,
    )
    return occurrences


# ------------------------------------------------------------------ #
#                         convenience helpers                        #
# ------------------------------------------------------------------ #

def upcoming_occurrences(spec: RecurrenceSpec, today: date, limit: int = 10) -> List[date]:
    """Next ``limit`` occurrence dates from ``today``, looking up to two years ahead."""
    return expand_occurrences(spec, today, today + relativedelta(years=2))[:limit]


def is_occurrence_date(spec: RecurrenceSpec, day: date) -> bool:
    return day in expand_occurrences(spec, day - timedelta(days=1), day + timedelta(days=1))


def occurrence_count(spec: RecurrenceSpec, until_date: date) -> int:
    return len(expand_occurrences(spec, spec.anchor_date, until_date))


__all__ = [
    "RecurrenceSpec",
    "resolve_end_condition",
    "build_dateutil_rule",
    "expand_occurrences",
    "upcoming_occurrences",
    "is_occurrence_date",
    "occurrence_count",
]
