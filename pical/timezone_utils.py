"""Timezone resolution and wall-clock conversion utilities for pical."""

from __future__ import annotations

import datetime
import logging
import os
import zoneinfo
from functools import lru_cache

logger = logging.getLogger(__name__)

# Default fallback timezone for all timezone operations
DEFAULT_SERVER_TIMEZONE = "UTC"

UTC = datetime.UTC


class InvalidTimezoneError(ValueError):
    """Timezone name is not a known IANA identifier."""


@lru_cache(maxsize=128)
def resolve_zone(name: str) -> zoneinfo.ZoneInfo:
    """Resolve an IANA timezone name to a ZoneInfo.

    Args:
        name: IANA identifier such as "America/Los_Angeles"

    Returns:
        ZoneInfo carrying the zone's historical and future DST rules

    Raises:
        InvalidTimezoneError: If the name is empty or unknown
    """
    if not name or not name.strip():
        raise InvalidTimezoneError("timezone name is empty")
    try:
        return zoneinfo.ZoneInfo(name.strip())
    except (zoneinfo.ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidTimezoneError(f"unknown timezone {name!r}") from e


def ensure_utc(dt: datetime.datetime) -> datetime.datetime:
    """Return dt as an aware UTC datetime (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_local_wall(dt: datetime.datetime, zone: datetime.tzinfo) -> datetime.datetime:
    """Convert an instant to naive wall-clock time in zone.

    Naive input is already wall-clock time in zone and is returned unchanged.
    """
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(zone).replace(tzinfo=None)


def wall_to_utc(wall: datetime.datetime, zone: datetime.tzinfo) -> datetime.datetime:
    """Convert naive wall-clock time in zone to an aware UTC instant.

    The offset is the one in force at that wall time, so a 09:00 series keeps
    09:00 local on both sides of a DST transition.

    Ambiguous times (the repeated hour when clocks fall back) resolve to the
    first occurrence (fold=0). Non-existent times (the skipped hour when
    clocks spring forward) keep the pre-transition offset, which moves them
    forward by the length of the gap: 02:30 on a spring-forward night becomes
    03:30 local.
    """
    return wall.replace(tzinfo=zone, fold=0).astimezone(UTC)


def local_midnight_utc(day: datetime.date, zone: datetime.tzinfo) -> datetime.datetime:
    """Return the UTC instant at which civil day starts in zone."""
    return wall_to_utc(datetime.datetime.combine(day, datetime.time.min), zone)


def now_utc() -> datetime.datetime:
    """Return current UTC time with tzinfo.

    Can be overridden for testing via the PICAL_TEST_TIME environment variable
    (ISO 8601, e.g. "2025-10-27T08:20:00-07:00"; naive values are UTC).
    """
    test_time = os.environ.get("PICAL_TEST_TIME")
    if test_time:
        try:
            from dateutil import parser as date_parser

            return ensure_utc(date_parser.isoparse(test_time))
        except ValueError as e:
            logger.warning("Failed to parse PICAL_TEST_TIME=%r: %s", test_time, e)

    return datetime.datetime.now(UTC)


def get_default_timezone(fallback: str = DEFAULT_SERVER_TIMEZONE) -> str:
    """Get default timezone from environment with validation.

    Args:
        fallback: Timezone used when PICAL_DEFAULT_TIMEZONE is unset or invalid

    Returns:
        Valid IANA timezone string
    """
    timezone = os.environ.get("PICAL_DEFAULT_TIMEZONE", fallback)
    try:
        resolve_zone(timezone)
        return timezone
    except InvalidTimezoneError:
        logger.warning("Invalid timezone %r, falling back to %r", timezone, fallback)
        return fallback


def serialize_iso(dt: datetime.datetime | None) -> str | None:
    """Serialize an aware datetime as an ISO-8601 UTC string ending in "Z".

    Naive values are floating wall-clock times and are emitted as-is.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.isoformat()
    return dt.astimezone(UTC).isoformat().replace("+00:00", "Z")
