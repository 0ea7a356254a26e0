"""Clock helpers.

All timestamps the engine persists or compares are timezone-aware UTC.
"""

from __future__ import annotations

import datetime as dt


def utcnow() -> dt.datetime:
    """Return the current time as an aware UTC datetime."""
    return dt.datetime.now(dt.UTC)


def as_utc(value: dt.datetime) -> dt.datetime:
    """Normalise ``value`` to UTC, treating naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.UTC)
    return value.astimezone(dt.UTC)


def is_older_than(
    value: dt.datetime | None, threshold: dt.timedelta, *, now: dt.datetime
) -> bool:
    """Return True when ``value`` is missing or lies more than ``threshold`` ago."""
    if value is None:
        return True
    return as_utc(value) < as_utc(now) - threshold
