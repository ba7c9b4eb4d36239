"""Time parsing and arithmetic utilities."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from typing import Iterable

from zoneinfo import ZoneInfo

_EXCESS_FRACTION = re.compile(r"(\.\d{6})\d+")


def tzinfo_from_name(tz_name: str) -> tzinfo:
    """Create tzinfo from an IANA timezone name.

    Args:
        tz_name: Timezone name like "America/New_York".

    Returns:
        tzinfo instance.

    Raises:
        ValueError: If timezone name is invalid on this system.
    """

    try:
        return ZoneInfo(tz_name)
    except Exception as exc:  # ZoneInfo raises KeyError / ZoneInfoNotFoundError (platform dependent)
        raise ValueError(f"Invalid time zone: {tz_name!r}. Example: America/New_York") from exc


def has_zone_marker(text: str) -> bool:
    """True when an ISO timestamp carries its own offset.

    A "-" only counts after the date part, so "2025-01-06" alone is not zoned.
    """

    s = text.strip()
    return s.endswith("Z") or s.endswith("z") or "+" in s or "-" in s[10:]


def _fromisoformat(text: str) -> datetime:
    s = text.strip().replace("T", " ").replace("t", " ")
    if s.endswith(("Z", "z")):
        s = s[:-1] + "+00:00"
    s = _EXCESS_FRACTION.sub(r"\1", s)
    try:
        return datetime.fromisoformat(s)
    except ValueError as exc:
        raise ValueError(f"Cannot parse timestamp: {text!r}. Expected e.g. 2025-01-06T13:07:30Z") from exc


def parse_gps_timestamp(text: str) -> datetime:
    """Parse a GPS provider timestamp.

    The provider omits the zone on most endpoints; those values are UTC. Getting
    this wrong shifts every arrival by the UTC offset.

    Args:
        text: ISO 8601 text, with or without offset.

    Returns:
        Timezone-aware datetime (UTC when the text had no marker).

    Raises:
        ValueError: If the text cannot be parsed.
    """

    dt = _fromisoformat(text)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def parse_local_timestamp(text: str, tz_name: str) -> datetime:
    """Parse payroll text that is wall-clock time in the business time zone.

    Offsets present in the text win. DST transitions come from the tz database.

    Raises:
        ValueError: If the text or time zone cannot be parsed.
    """

    tz = tzinfo_from_name(tz_name)
    dt = _fromisoformat(text)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    return dt.astimezone(tz)


def ensure_aware(dt: datetime, tz_name: str = "UTC") -> datetime:
    """Attach tz_name to a naive datetime; aware values pass through."""

    if dt.tzinfo is None:
        return dt.replace(tzinfo=tzinfo_from_name(tz_name))
    return dt


def local_day_bounds(day: date, tz_name: str) -> tuple[datetime, datetime]:
    """Return [local midnight, next local midnight) for day in tz_name."""

    tz = tzinfo_from_name(tz_name)
    start = datetime.combine(day, time.min).replace(tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min).replace(tzinfo=tz)
    return start, end


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from start to end, truncated toward zero (negative if end < start)."""

    return int((end - start).total_seconds() / 60.0)


def minutes_float(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60.0


@dataclass(frozen=True, slots=True)
class DeltaStats:
    """Sampling interval stats (seconds)."""

    count: int
    min_s: float
    median_s: float
    p95_s: float
    max_s: float


def delta_stats(timestamps_sorted: Iterable[datetime]) -> DeltaStats | None:
    """Compute basic sampling-interval statistics.

    Args:
        timestamps_sorted: Aware datetimes sorted ascending.

    Returns:
        DeltaStats or None if less than 2 points.
    """

    ts = list(timestamps_sorted)
    if len(ts) < 2:
        return None
    deltas = [(ts[i] - ts[i - 1]).total_seconds() for i in range(1, len(ts)) if ts[i] >= ts[i - 1]]
    if not deltas:
        return None
    deltas.sort()
    n = len(deltas)
    median = deltas[n // 2] if n % 2 == 1 else 0.5 * (deltas[n // 2 - 1] + deltas[n // 2])
    p95 = deltas[int(0.95 * (n - 1))]
    return DeltaStats(
        count=n,
        min_s=deltas[0],
        median_s=median,
        p95_s=p95,
        max_s=deltas[-1],
    )
