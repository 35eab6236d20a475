"""Conversion of wall-clock times between IANA time zones."""

from __future__ import annotations

from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def _load_location(name: str) -> tzinfo | None:
    """Return the zone for ``name``; None stands for the local zone."""
    if name in ("", "UTC"):
        return timezone.utc
    if name == "Local":
        return None
    return ZoneInfo(name)


def convert_timezone(time_string: str, source_timezone: str, target_timezone: str) -> str:
    """Convert ``time_string`` ("YYYY-MM-DD HH:MM:SS") from one zone to another.

    Raises ValueError for an unknown zone or a malformed time string.
    """
    try:
        source = _load_location(source_timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"invalid source timezone: {exc}") from exc

    try:
        naive = datetime.strptime(time_string, TIME_FORMAT)
    except ValueError as exc:
        raise ValueError(f"invalid time string: {exc}") from exc
    source_time = naive.astimezone() if source is None else naive.replace(tzinfo=source)

    try:
        target = _load_location(target_timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"invalid target timezone: {exc}") from exc

    target_time = source_time.astimezone() if target is None else source_time.astimezone(target)
    return target_time.strftime(TIME_FORMAT)