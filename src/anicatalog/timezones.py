"""Broadcast day names and timezone conversion.

Pure functions without I/O or logging. Callers decide what to do with a
``None`` from :func:`normalise_day`.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from anicatalog.errors import CatalogError, ErrorCode
from anicatalog.models.entities import Broadcast

# Upstream broadcast times are always published in Japan time.
SOURCE_TIMEZONE = "Asia/Tokyo"

# Index order matches date.weekday(): Monday == 0.
BROADCAST_DAYS: tuple[str, ...] = (
    "Mondays",
    "Tuesdays",
    "Wednesdays",
    "Thursdays",
    "Fridays",
    "Saturdays",
    "Sundays",
)
OTHER_DAY = "Other"

TIMEZONE_ALIASES: dict[str, str] = {
    "jst": "Asia/Tokyo",
    "ist": "Asia/Kolkata",
    "utc": "UTC",
    "gmt": "Etc/GMT",
    "kst": "Asia/Seoul",
    "cst": "Asia/Shanghai",
    "est": "America/New_York",
    "cet": "Europe/Paris",
    "pst": "America/Los_Angeles",
    "aest": "Australia/Sydney",
}

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def normalise_day(raw: str | None) -> str | None:
    """Map any casing / pluralisation of a weekday to its canonical form.

    ``"monday"``, ``"Monday"``, ``"MONDAYS"`` → ``"Mondays"``; ``"other"`` →
    ``"Other"``. Returns ``None`` for empty, ``"unknown"`` or unrecognised input.
    """
    if raw is None:
        return None
    value = raw.strip().lower()
    if not value:
        return None
    singular = value[:-1] if value.endswith("s") else value
    if OTHER_DAY.lower() in (value, singular):
        return OTHER_DAY
    for day in BROADCAST_DAYS:
        if day[:-1].lower() == singular:
            return day
    return None


def adjacent_days(day: str) -> list[str]:
    """Return ``[previous, day, next]`` with wraparound across the week.

    ``"Other"`` has no neighbours and is returned alone.
    """
    if day not in BROADCAST_DAYS:
        return [day]
    idx = BROADCAST_DAYS.index(day)
    return [BROADCAST_DAYS[(idx - 1) % 7], day, BROADCAST_DAYS[(idx + 1) % 7]]


def resolve_timezone(name: str) -> ZoneInfo:
    """Resolve an IANA name or a common abbreviation to a ZoneInfo.

    Raises CatalogError(INVALID_INPUT) for unknown zones.
    """
    key = TIMEZONE_ALIASES.get(name.strip().lower(), name.strip())
    try:
        return ZoneInfo(key)
    except (ZoneInfoNotFoundError, ValueError, OSError) as exc:
        raise CatalogError(
            code=ErrorCode.INVALID_INPUT,
            message=f"Unknown timezone: {name!r}",
            suggestion="Use an IANA timezone name such as 'Asia/Kolkata' or 'Europe/Berlin'.",
            recoverable=False,
        ) from exc


def is_source_timezone(zone: ZoneInfo) -> bool:
    return zone.key == SOURCE_TIMEZONE


def parse_time(value: str | None) -> tuple[int, int] | None:
    """Parse ``"HH:MM"``. Returns ``None`` when missing or out of range."""
    if not value:
        return None
    match = _TIME_RE.match(value.strip())
    if match is None:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return hour, minute


def convert_broadcast(
    broadcast: Broadcast,
    target: ZoneInfo,
    *,
    reference: date | None = None,
) -> Broadcast:
    """Express a source-zone broadcast slot in ``target``.

    The slot is anchored on the first occurrence of its weekday on or after
    ``reference`` (default: today in the source zone) so that DST rules of
    both zones apply for that week. Slots without a weekday or a parseable
    time are returned unchanged.
    """
    hm = parse_time(broadcast.time)
    if broadcast.day not in BROADCAST_DAYS or hm is None:
        return broadcast

    source = ZoneInfo(broadcast.timezone or SOURCE_TIMEZONE)
    if reference is None:
        reference = datetime.now(source).date()
    weekday = BROADCAST_DAYS.index(broadcast.day)
    anchor = reference + timedelta(days=(weekday - reference.weekday()) % 7)

    local = datetime(anchor.year, anchor.month, anchor.day, hm[0], hm[1], tzinfo=source)
    shifted = local.astimezone(target)

    day = BROADCAST_DAYS[shifted.weekday()]
    time = shifted.strftime("%H:%M")
    return Broadcast(
        day=day,
        time=time,
        timezone=target.key,
        string=f"{day} at {time} ({target.key})",
    )
