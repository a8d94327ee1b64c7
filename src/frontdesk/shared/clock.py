"""
Time helpers.

All persisted instants are timezone-aware UTC. Local time only exists while
evaluating an owner's calling window or daily quota.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Timezone-aware current UTC instant."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Normalise a datetime to aware UTC; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_zone(name: str) -> ZoneInfo:
    """Resolve an IANA zone name.

    Raises:
        ValueError: If the name is not a known zone.
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {name!r}") from exc


def to_local(instant: datetime, zone: ZoneInfo) -> datetime:
    return ensure_utc(instant).astimezone(zone)


def local_instant(day: date, at: time, zone: ZoneInfo) -> datetime:
    """The UTC instant of wall-clock `at` on `day` in `zone`."""
    return datetime.combine(day, at, tzinfo=zone).astimezone(timezone.utc)


def next_local_midnight(instant: datetime, zone: ZoneInfo) -> datetime:
    """The UTC instant at which the local calendar day after `instant` begins."""
    local = to_local(instant, zone)
    return local_instant(local.date() + timedelta(days=1), time(0, 0), zone)


def parse_hhmm(value: str) -> time:
    """Parse "HH:MM" (seconds ignored) into a time."""
    try:
        hours, minutes = value.strip()[:5].split(":")
        return time(int(hours), int(minutes))
    except (ValueError, AttributeError) as exc:
        raise ValueError(f"Invalid HH:MM time: {value!r}") from exc
