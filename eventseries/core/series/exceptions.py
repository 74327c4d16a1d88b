# eventseries/core/series/exceptions.py

"""Domain errors raised by the recurrence and series layers."""

from __future__ import annotations


class SeriesError(Exception):
    """Base class for all series-related failures."""


class SeriesValidationError(SeriesError):
    """Malformed request: bad rule, missing fields, non-positive duration."""


class InvalidRuleError(SeriesValidationError):
    """The recurrence rule string is not structurally valid."""


class ExpansionError(SeriesError):
    """A syntactically valid rule cannot be expanded (unsupported combination, empty result)."""


class SeriesNotFoundError(SeriesError):
    def __init__(self, slug: str) -> None:
        super().__init__(f"Series not found: {slug}")
        self.slug = slug


class UniqueViolationError(SeriesError):
    """The store rejected a row because of a unique constraint."""


class SlugCollisionExhausted(SeriesError):
    def __init__(self, title: str, attempts: int) -> None:
        super().__init__(f"Could not find a free slug for {title!r} after {attempts} attempts")
        self.title = title
        self.attempts = attempts


class SeriesPersistenceError(SeriesError):
    """The store failed while writing the series row."""


class OccurrencePersistenceError(SeriesError):
    """The occurrence batch could not be written; the series was rolled back."""


class WatermarkAdvanceError(SeriesError):
    """Occurrences are persisted but the watermark could not be moved forward."""


__all__ = [
    "SeriesError",
    "SeriesValidationError",
    "InvalidRuleError",
    "ExpansionError",
    "SeriesNotFoundError",
    "UniqueViolationError",
    "SlugCollisionExhausted",
    "SeriesPersistenceError",
    "OccurrencePersistenceError",
    "WatermarkAdvanceError",
]
