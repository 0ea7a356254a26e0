"""Parse and format the duration shorthand used in schedule settings.

Accepted forms are a plain number of seconds (``"3600"``) or a sequence of
``<number><unit>`` groups using ``d``, ``h``, ``m`` and ``s`` (``"8h"``,
``"1h30m"``, ``"2d"``).
"""

from __future__ import annotations

import datetime as dt
import math
import re

_UNIT_SECONDS = {"d": 86_400, "h": 3_600, "m": 60, "s": 1}
_GROUP = re.compile(r"(\d+(?:\.\d+)?)([dhms])")
_SHORTHAND = re.compile(r"(?:\d+(?:\.\d+)?[dhms])+")


def parse_duration(text: str) -> dt.timedelta:
    """Parse ``text`` into a positive :class:`datetime.timedelta`.

    Parameters
    ----------
    text : str
        Duration shorthand or a numeric seconds value.

    Returns
    -------
    datetime.timedelta
        The parsed duration.

    Raises
    ------
    ValueError
        If ``text`` is empty or malformed, or describes a zero, infinite or
        out-of-range duration.

    Examples
    --------
    >>> parse_duration("1h30m")
    datetime.timedelta(seconds=5400)
    >>> parse_duration("45")
    datetime.timedelta(seconds=45)

    """
    cleaned = text.strip().lower().replace(" ", "")
    if not cleaned:
        msg = "duration must not be empty"
        raise ValueError(msg)

    try:
        seconds = float(cleaned)
    except ValueError:
        if _SHORTHAND.fullmatch(cleaned) is None:
            msg = f"unrecognised duration: {text!r}"
            raise ValueError(msg) from None
        seconds = sum(
            float(amount) * _UNIT_SECONDS[unit]
            for amount, unit in _GROUP.findall(cleaned)
        )

    if not math.isfinite(seconds):
        msg = f"duration must be finite, got {text!r}"
        raise ValueError(msg)
    if seconds <= 0:
        msg = f"duration must be positive, got {text!r}"
        raise ValueError(msg)
    try:
        return dt.timedelta(seconds=seconds)
    except OverflowError:
        msg = f"duration out of range: {text!r}"
        raise ValueError(msg) from None


def format_duration(value: dt.timedelta) -> str:
    """Render ``value`` as shorthand, e.g. ``timedelta(hours=8)`` -> ``"8h"``."""
    remaining = int(value.total_seconds())
    if remaining <= 0:
        return "0s"
    parts: list[str] = []
    for unit, size in _UNIT_SECONDS.items():
        amount, remaining = divmod(remaining, size)
        if amount:
            parts.append(f"{amount}{unit}")
    return "".join(parts)
