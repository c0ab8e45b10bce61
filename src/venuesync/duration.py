"""Duration parsing utilities."""

import re
from datetime import timedelta

from venuesync.types import Duration

_DURATION_PATTERN = re.compile(r"(\d+)(ms|s|m|h|d)")
_UNITS: dict[str, int] = {
    "ms": 1,
    "s": 1000,
    "m": 60_000,
    "h": 3_600_000,
    "d": 86_400_000,
}


def parse_duration(duration: Duration) -> int:
    """Parse a duration to milliseconds.

    Accepts ints (already milliseconds), ``timedelta`` values, and strings
    made of one or more ``<number><unit>`` parts such as ``"10s"`` or
    ``"1m30s"``.
    """
    if isinstance(duration, bool):
        raise ValueError(f"Invalid duration: {duration!r}")
    if isinstance(duration, int):
        if duration < 0:
            raise ValueError(f"Duration must not be negative: {duration!r}")
        return duration
    if isinstance(duration, timedelta):
        return int(duration.total_seconds() * 1000)

    text = duration.strip()
    parts = _DURATION_PATTERN.findall(text)
    if not parts or "".join(v + u for v, u in parts) != text:
        raise ValueError(f"Invalid duration: {duration!r}")

    return sum(int(value) * _UNITS[unit] for value, unit in parts)


def format_duration(ms: int) -> str:
    """Render milliseconds with the largest unit that divides them evenly."""
    for unit in ("d", "h", "m", "s"):
        size = _UNITS[unit]
        if ms and ms % size == 0:
            return f"{ms // size}{unit}"
    return f"{ms}ms"
