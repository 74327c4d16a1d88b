"""
Recurrence subsystem package.

• ``parse_rule`` / ``is_valid_rule`` – разбор и проверка RRULE-строки (rules.py).
• ``expand_occurrences`` – развёртка правила в даты, привязанная к якорю (expander.py).

Чистые функции без I/O.
"""
from __future__ import annotations

from .rules import (  # noqa: F401
    ByDay,
    RecurrenceRule,
    RulePreset,
    build_rule,
    describe_rule,
    is_valid_rule,
    parse_rule,
    rule_presets,
    rules_equivalent,
    short_rule_label,
)
from .expander import (  # noqa: F401
    RecurrenceSpec,
    expand_occurrences,
    is_occurrence_date,
    occurrence_count,
    resolve_end_condition,
    upcoming_occurrences,
)

__all__: list[str] = [
    "ByDay",
    "RecurrenceRule",
    "RulePreset",
    "RecurrenceSpec",
    "build_rule",
    "describe_rule",
    "is_valid_rule",
    "parse_rule",
    "rule_presets",
    "rules_equivalent",
    "short_rule_label",
    "expand_occurrences",
    "is_occurrence_date",
    "occurrence_count",
    "resolve_end_condition",
    "upcoming_occurrences",
]
