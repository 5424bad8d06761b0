from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""

    return datetime.now(timezone.utc)


def local_now(tz_name: str = "Asia/Shanghai") -> datetime:
    """Return the current wall-clock time in the configured timezone.

    Unknown zone names fall back to UTC rather than failing prompt assembly.
    """

    try:
        zone = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        zone = timezone.utc
    return datetime.now(zone)
