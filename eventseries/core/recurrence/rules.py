# eventseries/core/recurrence/rules.py
"""
RRULE (RFC 5545 subset) parsing, validation and formatting.

Format: ``FREQ=WEEKLY;BYDAY=TU;INTERVAL=2``. Only structure is checked
here; whether a combination can actually be expanded is decided by
``expander``.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

from dateutil.parser import isoparse
from pydantic import BaseModel, ConfigDict

from eventseries.core.series.exceptions import InvalidRuleError

FREQUENCIES: Tuple[str, ...] = ("DAILY", "WEEKLY", "MONTHLY", "YEARLY")

# Индекс совпадает с date.weekday() (понедельник = 0)
WEEKDAY_CODES: Tuple[str, ...] = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")

WEEKDAY_NAMES: Dict[str, str] = {
    "MO": "Monday",
    "TU": "Tuesday",
    "WE": "Wednesday",
    "TH": "Thursday",
    "FR": "Friday",
    "SA": "Saturday",
    "SU": "Sunday",
}

ORDINAL_NAMES: Dict[int, str] = {
    1: "first",
    2: "second",
    3: "third",
    4: "fourth",
    5: "fifth",
    -1: "last",
}

_BYDAY_TOKEN = re.compile(r"^(?P<pos>-1|\+?[1-5])?(?P<day>MO|TU|WE|TH|FR|SA|SU)$")


class ByDay(BaseModel):
    """One BYDAY token: ``TU`` (position None) or ``2TU`` / ``-1FR``."""
    model_config = ConfigDict(frozen=True)

    day: str
    position: Optional[int] = None

    def __str__(self) -> str:
        return f"{self.position}{self.day}" if self.position else self.day


class RecurrenceRule(BaseModel):
    """Parsed form of a rule string."""
    model_config = ConfigDict(frozen=True)

    frequency: str
    interval: int = 1
    by_day: Tuple[ByDay, ...] = ()
    month_day: Optional[int] = None
    count: Optional[int] = None
    until: Optional[date] = None
    week_start: Optional[str] = None

    @property
    def week_days(self) -> List[str]:
        return [token.day for token in self.by_day if token.position is None]

    @property
    def month_week_day(self) -> Optional[ByDay]:
        positional = [token for token in self.by_day if token.position is not None]
        return positional[0] if positional else None


class RulePreset(BaseModel):
    id: str
    label: str
    rrule: str


# ------------------------------------------------------------------ #
#                             parsing                                #
# ------------------------------------------------------------------ #

def _split_parts(rule: str) -> Dict[str, str]:
    text = rule.strip()
    if text.upper().startswith("RRULE:"):
        text = text[len("RRULE:"):]
    if not text:
        raise InvalidRuleError("Recurrence rule is empty")

    parts: Dict[str, str] = {}
    for chunk in text.split(";"):
        key, sep, value = chunk.partition("=")
        key = key.strip().upper()
        value = value.strip().upper()
        if not sep or not key or not value:
            raise InvalidRuleError(f"Malformed rule part: {chunk!r}")
        if key in parts:
            raise InvalidRuleError(f"Duplicate rule part: {key}")
        parts[key] = value
    return parts


def _positive_int(key: str, value: str, upper: int | None = None) -> int:
    if not value.isdigit():
        raise InvalidRuleError(f"{key} must be a positive integer, got {value!r}")
    number = int(value)
    if number < 1 or (upper is not None and number > upper):
        raise InvalidRuleError(f"{key} out of range: {number}")
    return number


def _parse_until(value: str) -> date:
    try:
        parsed = isoparse(value)
    except ValueError as exc:
        raise InvalidRuleError(f"UNTIL is not a valid date: {value!r}") from exc
    return parsed.date() if isinstance(parsed, datetime) else parsed


def _parse_by_day(value: str) -> Tuple[ByDay, ...]:
    tokens: List[ByDay] = []
    for raw in value.split(","):
        match = _BYDAY_TOKEN.match(raw.strip())
        if not match:
            raise InvalidRuleError(f"Invalid BYDAY token: {raw!r}")
        position = int(match.group("pos")) if match.group("pos") else None
        tokens.append(ByDay(day=match.group("day"), position=position))
    return tuple(tokens)


def parse_rule(rule: str) -> RecurrenceRule:
    """
    Разбирает строку правила в ``RecurrenceRule``.

    Raises:
        InvalidRuleError: строка структурно некорректна (нет FREQ,
            неизвестная частота, UNTIL и COUNT одновременно и т.п.).
    """
    if not isinstance(rule, str):
        raise InvalidRuleError("Recurrence rule must be a string")

    parts = _split_parts(rule)

    frequency = parts.get("FREQ")
    if frequency is None:
        raise InvalidRuleError("Recurrence rule must contain FREQ")
    if frequency not in FREQUENCIES:
        raise InvalidRuleError(f"Unsupported frequency: {frequency}")

    if "UNTIL" in parts and "COUNT" in parts:
        raise InvalidRuleError("UNTIL and COUNT cannot be combined in one rule")

    week_start = parts.get("WKST")
    if week_start is not None and week_start not in WEEKDAY_CODES:
        raise InvalidRuleError(f"Invalid WKST: {week_start}")

    # Неизвестные ключи (BYSETPOS, BYHOUR, ...) допустимы по RFC, но игнорируются
    return RecurrenceRule(
        frequency=frequency,
        interval=_positive_int("INTERVAL", parts["INTERVAL"]) if "INTERVAL" in parts else 1,
        by_day=_parse_by_day(parts["BYDAY"]) if "BYDAY" in parts else (),
        month_day=_positive_int("BYMONTHDAY", parts["BYMONTHDAY"], upper=31) if "BYMONTHDAY" in parts else None,
        count=_positive_int("COUNT", parts["COUNT"]) if "COUNT" in parts else None,
        until=_parse_until(parts["UNTIL"]) if "UNTIL" in parts else None,
        week_start=week_start,
    )


def is_valid_rule(rule: str) -> bool:
    """True if ``rule`` is a structurally valid recurrence expression."""
    try:
        parse_rule(rule)
    except InvalidRuleError:
        return False
    return True


# ------------------------------------------------------------------ #
#                      building & describing                         #
# ------------------------------------------------------------------ #

def build_rule(rule: RecurrenceRule) -> str:
    parts = [f"FREQ={rule.frequency}"]
    if rule.interval > 1:
        parts.append(f"INTERVAL={rule.interval}")
    if rule.frequency == "WEEKLY" and rule.week_days:
        parts.append("BYDAY=" + ",".join(rule.week_days))
    if rule.frequency == "MONTHLY":
        if rule.month_week_day is not None:
            parts.append(f"BYDAY={rule.month_week_day}")
        elif rule.month_day is not None:
            parts.append(f"BYMONTHDAY={rule.month_day}")
    if rule.week_start:
        parts.append(f"WKST={rule.week_start}")
    if rule.count is not None:
        parts.append(f"COUNT={rule.count}")
    elif rule.until is not None:
        parts.append(f"UNTIL={rule.until:%Y%m%d}")
    return ";".join(parts)


def _ordinal(position: int) -> str:
    return ORDINAL_NAMES.get(position, f"{position}th")


def describe_rule(rule: str) -> str:
    """Human-readable description, e.g. ``Every 2 weeks on Tuesday, Thursday``."""
    if not rule:
        return ""
    parsed = parse_rule(rule)

    if parsed.interval == 1:
        unit = {"DAILY": "day", "WEEKLY": "week", "MONTHLY": "month", "YEARLY": "year"}[parsed.frequency]
        description = f"Every {unit}"
    else:
        unit = {"DAILY": "days", "WEEKLY": "weeks", "MONTHLY": "months", "YEARLY": "years"}[parsed.frequency]
        description = f"Every {parsed.interval} {unit}"

    if parsed.frequency == "WEEKLY" and parsed.week_days:
        description += " on " + ", ".join(WEEKDAY_NAMES[d] for d in parsed.week_days)
    elif parsed.frequency == "MONTHLY":
        positional = parsed.month_week_day
        if positional is not None and positional.position is not None:
            description += f" on the {_ordinal(positional.position)} {WEEKDAY_NAMES[positional.day]}"
        elif parsed.month_day is not None:
            description += f" on day {parsed.month_day}"

    if parsed.count is not None:
        description += f", {parsed.count} times"
    elif parsed.until is not None:
        description += f", until {parsed.until.isoformat()}"
    return description


def short_rule_label(rule: str) -> str:
    if not rule:
        return ""
    parsed = parse_rule(rule)

    if parsed.frequency == "WEEKLY":
        if parsed.interval == 1:
            if len(parsed.week_days) == 1:
                return f"Weekly on {WEEKDAY_NAMES[parsed.week_days[0]]}"
            return "Weekly"
        return f"Every {parsed.interval} weeks"
    if parsed.frequency == "MONTHLY":
        positional = parsed.month_week_day
        if positional is not None and positional.position is not None:
            return f"{_ordinal(positional.position)} {WEEKDAY_NAMES[positional.day]}"
        if parsed.month_day is not None:
            return f"Day {parsed.month_day} monthly"
        return "Monthly"
    if parsed.frequency == "DAILY":
        return "Daily" if parsed.interval == 1 else f"Every {parsed.interval} days"
    return "Yearly"


def rule_presets(day: date) -> List[RulePreset]:
    """Typical cadences for a first occurrence on ``day``."""
    code = WEEKDAY_CODES[day.weekday()]
    name = WEEKDAY_NAMES[code]
    week_of_month = (day.day - 1) // 7 + 1
    return [
        RulePreset(id="weekly", label=f"Every week on {name}", rrule=f"FREQ=WEEKLY;BYDAY={code}"),
        RulePreset(id="biweekly", label=f"Every 2 weeks on {name}", rrule=f"FREQ=WEEKLY;INTERVAL=2;BYDAY={code}"),
        RulePreset(
            id="monthly-weekday",
            label=f"Monthly on the {_ordinal(week_of_month)} {name}",
            rrule=f"FREQ=MONTHLY;BYDAY={week_of_month}{code}",
        ),
        RulePreset(id="monthly-day", label=f"Monthly on day {day.day}", rrule=f"FREQ=MONTHLY;BYMONTHDAY={day.day}"),
    ]


def rules_equivalent(first: str, second: str) -> bool:
    """Same cadence, ignoring end condition and BYDAY order."""
    a, b = parse_rule(first), parse_rule(second)
    return (
        a.frequency == b.frequency
        and a.interval == b.interval
        and sorted(map(str, a.by_day)) == sorted(map(str, b.by_day))
        and a.month_day == b.month_day
    )


__all__ = [
    "FREQUENCIES",
    "WEEKDAY_CODES",
    "ByDay",
    "RecurrenceRule",
    "RulePreset",
    "parse_rule",
    "is_valid_rule",
    "build_rule",
    "describe_rule",
    "short_rule_label",
    "rule_presets",
    "rules_equivalent",
]
