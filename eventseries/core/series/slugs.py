# eventseries/core/series/slugs.py

from __future__ import annotations

import random
import re
import string
import unicodedata
from datetime import date

SLUG_ALPHABET = string.digits + string.ascii_lowercase
BASE_SUFFIX_LENGTH = 4
SUFFIX_GROWTH = 2

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def sanitize_slug(text: str, max_length: int = 50) -> str:
    """Lowercase, strip diacritics, collapse everything else to single dashes."""
    # "đ" не раскладывается через NFD, заменяем вручную
    decomposed = unicodedata.normalize("NFD", text.lower().replace("đ", "d"))
    ascii_only = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    slug = _NON_SLUG.sub("-", ascii_only).strip("-")
    return slug[:max_length].strip("-")


def suffix_length(attempt: int) -> int:
    return BASE_SUFFIX_LENGTH + SUFFIX_GROWTH * attempt


def series_slug(title: str, attempt: int, rng: random.Random, max_length: int = 50) -> str:
    """
    Slug for a series: sanitized title plus a random base-36 suffix.

    Every retry gets a strictly longer suffix.
    """
    base = sanitize_slug(title, max_length) or "series"
    suffix = "".join(rng.choices(SLUG_ALPHABET, k=suffix_length(attempt)))
    return f"{base}-{suffix}"


def occurrence_slug(series_slug_value: str, day: date) -> str:
    return f"{series_slug_value}-{day:%Y%m%d}"


__all__ = ["sanitize_slug", "series_slug", "occurrence_slug", "suffix_length", "SLUG_ALPHABET"]
