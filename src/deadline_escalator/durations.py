"""Compact duration strings ("15m", "-1s", "3d") to signed seconds."""

from __future__ import annotations

import re

from deadline_escalator.errors import MalformedDuration

_DURATION_RE = re.compile(r"^(-?)([0-9]+)([smhdwM])$")

UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 604800,
    "M": 2592000,  # 30-day month
}


def parse_duration(value: str | int | None) -> int | None:
    """Convert a compact duration into signed seconds.

    Args:
        value: Duration such as ``"15m"`` or ``"-2h"``. Integers are taken
            as seconds already.

    Returns:
        Signed number of seconds, or None when no value was given
        (None, empty or whitespace-only string).

    Raises:
        MalformedDuration: If the value is present but does not parse.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise MalformedDuration(value)
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        raise MalformedDuration(value)
    text = value.strip()
    if not text:
        return None
    m = _DURATION_RE.match(text)
    if not m:
        raise MalformedDuration(value)
    sign, magnitude, unit = m.groups()
    seconds = int(magnitude) * UNIT_SECONDS[unit]
    return -seconds if sign else seconds


def format_duration(seconds: int) -> str:
    """Render seconds in the largest unit that divides them exactly."""
    if seconds == 0:
        return "0s"
    sign = "-" if seconds < 0 else ""
    magnitude = abs(seconds)
    for unit in ("M", "w", "d", "h", "m"):
        size = UNIT_SECONDS[unit]
        if magnitude % size == 0:
            return f"{sign}{magnitude // size}{unit}"
    return f"{sign}{magnitude}s"
