"""Timezone name normalization for TZIDs that have no VTIMEZONE block."""

from __future__ import annotations

import datetime
import logging
import zoneinfo
from functools import lru_cache

logger = logging.getLogger(__name__)

UTC = datetime.timezone.utc

# TZIDs that always mean UTC, compared case-insensitively
UTC_ALIASES = frozenset({"UTC", "GMT", "Z", "ETC/UTC", "ETC/GMT", "ETC/UNIVERSAL", "UNIVERSAL", "ZULU"})

# Windows timezone names used in ICS files from Outlook/Exchange
# https://docs.microsoft.com/en-us/windows-hardware/manufacture/desktop/default-time-zones
WINDOWS_TZ_MAP: dict[str, str] = {
    # US
    "Pacific Standard Time": "America/Los_Angeles",
    "Mountain Standard Time": "America/Denver",
    "Central Standard Time": "America/Chicago",
    "Eastern Standard Time": "America/New_York",
    "Alaskan Standard Time": "America/Anchorage",
    "Hawaiian Standard Time": "Pacific/Honolulu",
    "US Mountain Standard Time": "America/Phoenix",
    "Atlantic Standard Time": "America/Halifax",
    "Newfoundland Standard Time": "America/St_Johns",
    "Canada Central Standard Time": "America/Regina",
    # Europe
    "GMT Standard Time": "Europe/London",
    "Greenwich Standard Time": "Atlantic/Reykjavik",
    "W. Europe Standard Time": "Europe/Berlin",
    "Central Europe Standard Time": "Europe/Budapest",
    "Central European Standard Time": "Europe/Warsaw",
    "Romance Standard Time": "Europe/Paris",
    "E. Europe Standard Time": "Europe/Chisinau",
    "FLE Standard Time": "Europe/Kiev",
    "GTB Standard Time": "Europe/Bucharest",
    "Russian Standard Time": "Europe/Moscow",
    "Turkey Standard Time": "Europe/Istanbul",
    "W. Central Africa Standard Time": "Africa/Lagos",
    # Asia
    "China Standard Time": "Asia/Shanghai",
    "Tokyo Standard Time": "Asia/Tokyo",
    "Korea Standard Time": "Asia/Seoul",
    "Singapore Standard Time": "Asia/Singapore",
    "Taipei Standard Time": "Asia/Taipei",
    "India Standard Time": "Asia/Kolkata",
    "SE Asia Standard Time": "Asia/Bangkok",
    "West Asia Standard Time": "Asia/Tashkent",
    "Pakistan Standard Time": "Asia/Karachi",
    "Arabian Standard Time": "Asia/Dubai",
    "Arab Standard Time": "Asia/Riyadh",
    "Israel Standard Time": "Asia/Jerusalem",
    "Iran Standard Time": "Asia/Tehran",
    # Australia and Pacific
    "AUS Eastern Standard Time": "Australia/Sydney",
    "AUS Central Standard Time": "Australia/Darwin",
    "Cen. Australia Standard Time": "Australia/Adelaide",
    "E. Australia Standard Time": "Australia/Brisbane",
    "Tasmania Standard Time": "Australia/Hobart",
    "W. Australia Standard Time": "Australia/Perth",
    "New Zealand Standard Time": "Pacific/Auckland",
    # South America and Africa
    "SA Pacific Standard Time": "America/Bogota",
    "Pacific SA Standard Time": "America/Santiago",
    "Argentina Standard Time": "America/Argentina/Buenos_Aires",
    "E. South America Standard Time": "America/Sao_Paulo",
    "South Africa Standard Time": "Africa/Johannesburg",
    "Egypt Standard Time": "Africa/Cairo",
    "Morocco Standard Time": "Africa/Casablanca",
    "UTC": "UTC",
}

# Obsolete or legacy names mapped to current IANA identifiers
TZ_ALIAS_MAP: dict[str, str] = {
    "US/Pacific": "America/Los_Angeles",
    "US/Mountain": "America/Denver",
    "US/Central": "America/Chicago",
    "US/Eastern": "America/New_York",
    "US/Alaska": "America/Anchorage",
    "US/Hawaii": "Pacific/Honolulu",
    "US/Arizona": "America/Phoenix",
    "Asia/Rangoon": "Asia/Yangon",
    "America/Godthab": "America/Nuuk",
}


def now_utc() -> datetime.datetime:
    """Current time as an aware UTC datetime."""
    return datetime.datetime.now(UTC)


def is_utc_alias(tzid: str) -> bool:
    return tzid.strip().upper() in UTC_ALIASES


def windows_tz_to_iana(windows_tz: str) -> str | None:
    """Convert a Windows timezone name to an IANA identifier.

    Args:
        windows_tz: Windows timezone name (e.g., "Mountain Standard Time")

    Returns:
        IANA timezone identifier (e.g., "America/Denver") or None if not found
    """
    return WINDOWS_TZ_MAP.get(windows_tz.strip())


@lru_cache(maxsize=256)
def load_zone(tz_name: str) -> zoneinfo.ZoneInfo | None:
    """Resolve a Windows name, legacy alias or IANA name to a ZoneInfo.

    Args:
        tz_name: Timezone name as it appears in a TZID parameter

    Returns:
        ZoneInfo, or None if the name cannot be resolved
    """
    if not tz_name:
        return None

    name = tz_name.strip()
    candidate = windows_tz_to_iana(name) or TZ_ALIAS_MAP.get(name, name)
    try:
        return zoneinfo.ZoneInfo(candidate)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError, OSError):
        logger.debug("No zoneinfo entry for timezone name %r", tz_name)
        return None
