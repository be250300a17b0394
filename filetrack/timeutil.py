"""Date, duration, and effort parsing helpers.

All instants are timezone-aware UTC datetimes. Naive inputs are taken to be
UTC so that parsing never depends on the machine's local zone.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_DURATION_TOKEN_RE = re.compile(
    r"(\d+(?:\.\d+)?)\s*(weeks?|w|days?|d|hours?|hrs?|h|minutes?|mins?|m)(?![a-z])",
    re.IGNORECASE,
)

_UNIT_SECONDS = {
    "w": 7 * 86400,
    "d": 86400,
    "h": 3600,
    "m": 60,
}

# Effort hours per unit: a working day is 8h, a working week 40h.
_EFFORT_HOURS = {
    "m": 1 / 60,
    "h": 1.0,
    "d": 8.0,
    "w": 40.0,
}

_EFFORT_TOKEN_RE = re.compile(
    r"(\d+(?:\.\d+)?)\s*(points?|pts?|weeks?|w|days?|d|hours?|hrs?|h|minutes?|mins?|m)?",
    re.IGNORECASE,
)


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_rfc3339(value: datetime) -> str:
    """Format an instant as RFC 3339 in UTC with second precision."""
    return value.astimezone(UTC).replace(microsecond=0).isoformat()


def parse_human_datetime(text: str, now: datetime | None = None) -> datetime:
    """Parse a human-friendly date/time string into a UTC instant.

    Accepts RFC 3339 / ISO-8601 (with or without offset), ``YYYY-MM-DD``
    (midnight UTC), and the keywords now, today, tomorrow, yesterday and
    "next week".

    Raises:
        ValueError: If the text is not recognised.
    """
    raw = (text or "").strip()
    if not raw:
        msg = "Empty date/time value"
        raise ValueError(msg)
    now = now or utc_now()
    lowered = raw.lower()
    midnight = now.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
    keywords = {
        "now": now.astimezone(UTC),
        "today": midnight,
        "tomorrow": midnight + timedelta(days=1),
        "yesterday": midnight - timedelta(days=1),
        "next week": midnight + timedelta(days=7),
    }
    if lowered in keywords:
        return keywords[lowered]

    if _DATE_RE.match(raw):
        parsed = datetime.strptime(raw, "%Y-%m-%d")  # noqa: DTZ007
        return parsed.replace(tzinfo=UTC)

    candidate = raw[:-1] + "+00:00" if raw.endswith(("Z", "z")) else raw
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        msg = f"Unrecognised date/time '{raw}'"
        raise ValueError(msg) from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def try_parse_datetime(text: str | None) -> datetime | None:
    """Parse a stored timestamp, returning None for blank or invalid values."""
    if not text or not text.strip():
        return None
    try:
        return parse_human_datetime(text)
    except ValueError:
        return None


def parse_duration(text: str | None) -> timedelta | None:
    """Parse a relative duration such as ``2w``, ``10d``, ``36h`` or ``1w 2d``.

    Returns:
        The summed timedelta, or None when the text is blank or has any
        token that is not a duration.
    """
    if not text:
        return None
    raw = text.strip()
    if not raw:
        return None
    total = 0.0
    pos = 0
    for match in _DURATION_TOKEN_RE.finditer(raw):
        if raw[pos : match.start()].strip(" ,+"):
            return None
        unit = match.group(2)[0].lower()
        total += float(match.group(1)) * _UNIT_SECONDS[unit]
        pos = match.end()
    if pos == 0 or raw[pos:].strip(" ,+"):
        return None
    return timedelta(seconds=total)


@dataclass(frozen=True)
class Effort:
    """A parsed effort estimate."""

    kind: str  # "points" or "hours"
    value: float


def parse_effort(text: str) -> Effort:
    """Parse an effort estimate.

    ``3pt`` / ``5 points`` / bare ``5`` are story points. ``2h``, ``90m``,
    ``1.5d`` (8h days) and ``1w`` (40h weeks) are hours; several time tokens
    are summed. Points and hours cannot be mixed.

    Raises:
        ValueError: If the text is empty, negative, or not an estimate.
    """
    raw = (text or "").strip()
    if not raw:
        msg = "Effort cannot be empty"
        raise ValueError(msg)
    points = 0.0
    hours = 0.0
    kinds: set[str] = set()
    pos = 0
    for match in _EFFORT_TOKEN_RE.finditer(raw):
        if not match.group(0):
            continue
        if raw[pos : match.start()].strip(" ,+"):
            break
        value = float(match.group(1))
        unit = (match.group(2) or "").lower()
        if not unit or unit.startswith("p"):
            kinds.add("points")
            points += value
        else:
            kinds.add("hours")
            hours += value * _EFFORT_HOURS[unit[0]]
        pos = match.end()
    if not kinds or raw[pos:].strip(" ,+"):
        msg = f"Invalid effort '{raw}'"
        raise ValueError(msg)
    if len(kinds) > 1:
        msg = f"Effort '{raw}' mixes points and time units"
        raise ValueError(msg)
    if "points" in kinds:
        return Effort("points", points)
    return Effort("hours", round(hours, 4))


def format_duration(value: timedelta) -> str:
    """Render a duration compactly: ``2d 4h``, ``3h 15m``, ``45m``, ``0m``."""
    total_minutes = max(int(value.total_seconds() // 60), 0)
    days, rem = divmod(total_minutes, 1440)
    hours, minutes = divmod(rem, 60)
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes and not days:
        parts.append(f"{minutes}m")
    return " ".join(parts) or "0m"


def duration_to_days(value: timedelta) -> float:
    return round(value.total_seconds() / 86400, 2)
