"""Parsing of clock times, weekdays and appointment moments."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any

HHMM_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_WEEKDAY_ALIASES = {name[:3]: name for name in WEEKDAYS}


def is_hhmm(value: Any) -> bool:
    return isinstance(value, str) and bool(HHMM_PATTERN.match(value))


def parse_hhmm(value: str) -> time:
    """Parse a strict ``HH:MM`` string (``9:05`` and ``09:05`` both accepted)."""
    if not is_hhmm(value):
        raise ValueError(f"Invalid time, expected HH:MM: {value!r}")
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def normalize_hhmm(value: str) -> str:
    """Zero-pad an ``HH:MM`` string so values compare lexicographically."""
    return parse_hhmm(value).strftime("%H:%M")


def normalize_weekday(value: str) -> str | None:
    """Map ``Tue``/``tuesday``/``TUESDAY`` to ``tuesday``; None if unrecognised."""
    key = value.strip().lower()
    if len(key) < 3:
        return None
    name = _WEEKDAY_ALIASES.get(key[:3])
    if name and name.startswith(key):
        return name
    return None


@dataclass(frozen=True)
class Moment:
    """A point in time as far as the context describes it.

    Any part may be missing: ``"18:00 Tuesday"`` has no calendar date.
    """

    day: date | None = None
    clock: time | None = None
    weekday: str | None = None


def parse_moment(value: Any) -> Moment | None:
    """Parse a context time value.

    Accepts ``datetime``/``date`` objects, ISO 8601 strings, and free-form
    ``"HH:MM Weekday"``, ``"Weekday HH:MM"`` or ``"HH:MM"`` phrases. Returns
    None when nothing usable can be extracted.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return Moment(value.date(), value.time().replace(tzinfo=None), WEEKDAYS[value.weekday()])
    if isinstance(value, date):
        return Moment(value, None, WEEKDAYS[value.weekday()])
    if isinstance(value, time):
        return Moment(None, value.replace(tzinfo=None), None)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if len(text) == 10:
        try:
            return parse_moment(date.fromisoformat(text))
        except ValueError:
            pass
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        return parse_moment(parsed)
    except ValueError:
        pass

    clock = None
    weekday = None
    for token in text.replace(",", " ").split():
        if clock is None and is_hhmm(token):
            clock = parse_hhmm(token)
        elif weekday is None and normalize_weekday(token):
            weekday = normalize_weekday(token)
        else:
            return None
    if clock is None and weekday is None:
        return None
    return Moment(None, clock, weekday)


def in_time_range(clock: time, start: str, end: str) -> bool:
    """True if ``start <= clock < end``; ranges with ``start > end`` wrap midnight."""
    lower = parse_hhmm(start)
    upper = parse_hhmm(end)
    if lower <= upper:
        return lower <= clock < upper
    return clock >= lower or clock < upper
