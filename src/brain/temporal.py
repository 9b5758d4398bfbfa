"""Relative time expression parsing for query filtering.

Maps phrases such as "two weeks ago" or "yesterday" to a concrete
[start, end) window. The reference time is always passed in, so the same
(text, now) pair yields the same window.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta

from pydantic import BaseModel

_NUMBER_WORDS: dict[str, int] = {
    "a": 1,
    "an": 1,
    "one": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
    "seven": 7,
    "eight": 8,
    "nine": 9,
    "ten": 10,
}

_COUNT = r"(\d{1,9}|" + "|".join(_NUMBER_WORDS) + r")"

_WEEKS_AGO = re.compile(rf"\b{_COUNT}\s+weeks?\s+ago\b", re.IGNORECASE)
_DAYS_AGO = re.compile(rf"\b{_COUNT}\s+days?\s+ago\b", re.IGNORECASE)
_LAST_WEEK = re.compile(r"\blast\s+week\b", re.IGNORECASE)
_LAST_MONTH = re.compile(r"\blast\s+month\b", re.IGNORECASE)
_YESTERDAY = re.compile(r"\byesterday\b", re.IGNORECASE)


class TemporalWindow(BaseModel):
    """A [start, end) time range derived from a relative time phrase."""

    start: datetime
    end: datetime
    phrase: str

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


def _count(token: str) -> int:
    if token.isdigit():
        return int(token)
    return _NUMBER_WORDS[token.lower()]


def _centered(now: datetime, days_back: float, half_width: timedelta) -> tuple[datetime, datetime] | None:
    """Window around now - days_back, or None when it falls outside datetime's range."""
    try:
        center = now - timedelta(days=days_back)
        return center - half_width, center + half_width
    except OverflowError:
        return None


def parse_temporal_window(text: str, now: datetime) -> TemporalWindow | None:
    """Parse the first relative time phrase in text.

    Rules are tried in priority order: "N weeks ago", "N days ago",
    "last week", "last month", "yesterday". The first rule that matches
    decides the window.

    Args:
        text: Free-text question.
        now: Reference time the phrase is relative to.

    Returns:
        TemporalWindow, or None when no phrase is recognized or the
        phrase points outside the representable date range (no filter).
    """
    match = _WEEKS_AGO.search(text)
    if match:
        bounds = _centered(now, 7 * _count(match.group(1)), timedelta(days=3.5))
        if bounds is None:
            return None
        return TemporalWindow(start=bounds[0], end=bounds[1], phrase=match.group(0))

    match = _DAYS_AGO.search(text)
    if match:
        bounds = _centered(now, _count(match.group(1)), timedelta(hours=12))
        if bounds is None:
            return None
        return TemporalWindow(start=bounds[0], end=bounds[1], phrase=match.group(0))

    match = _LAST_WEEK.search(text)
    if match:
        return TemporalWindow(
            start=now - timedelta(days=14),
            end=now - timedelta(days=7),
            phrase=match.group(0),
        )

    match = _LAST_MONTH.search(text)
    if match:
        return TemporalWindow(
            start=now - timedelta(days=30),
            end=now,
            phrase=match.group(0),
        )

    match = _YESTERDAY.search(text)
    if match:
        return TemporalWindow(
            start=now - timedelta(days=2),
            end=now - timedelta(days=1),
            phrase=match.group(0),
        )

    return None
