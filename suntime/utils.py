#!/usr/bin/env python3
"""
Utility functions for SunTime
Shared helpers for coordinates, distances and local time
"""

import math
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional

import pytz


def validate_coordinates(latitude: float, longitude: float) -> bool:
    """
    Check that a coordinate pair is within the valid range.

    Args:
        latitude: Latitude in degrees
        longitude: Longitude in degrees

    Returns:
        True if latitude is in [-90, 90] and longitude in [-180, 180]
    """
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError):
        return False
    if math.isnan(lat) or math.isnan(lon):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate haversine distance between two points in kilometers.

    Args:
        lat1: Latitude of first point in degrees
        lon1: Longitude of first point in degrees
        lat2: Latitude of second point in degrees
        lon2: Longitude of second point in degrees

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(lat1)
    lon1_rad = math.radians(lon1)
    lat2_rad = math.radians(lat2)
    lon2_rad = math.radians(lon2)

    # Haversine formula
    dlat = lat2_rad - lat1_rad
    dlon = lon2_rad - lon1_rad
    a = math.sin(dlat/2)**2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon/2)**2
    c = 2 * math.asin(math.sqrt(min(1.0, a)))

    # Earth's radius in kilometers
    earth_radius = 6371.0
    return earth_radius * c


def format_coordinates(latitude: float, longitude: float, precision: int = 4) -> str:
    """Format a coordinate pair for log lines, e.g. '40.7128N, 74.0060W'"""
    ns = 'N' if latitude >= 0 else 'S'
    ew = 'E' if longitude >= 0 else 'W'
    return f"{abs(latitude):.{precision}f}{ns}, {abs(longitude):.{precision}f}{ew}"


def get_timezone(timezone_str: str = '', logger=None) -> tzinfo:
    """
    Resolve a configured timezone name.

    Args:
        timezone_str: IANA timezone name, empty for the system local zone
        logger: Optional logger for reporting unknown names

    Returns:
        A tzinfo; the system local zone if the name is empty or unknown
    """
    if timezone_str:
        try:
            return pytz.timezone(timezone_str)
        except pytz.exceptions.UnknownTimeZoneError:
            if logger:
                logger.warning(f"Invalid timezone '{timezone_str}', using system timezone")
    return datetime.now().astimezone().tzinfo


def utc_now() -> datetime:
    """Current instant as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def to_local(moment: datetime, tz: tzinfo) -> datetime:
    """Convert an aware datetime to the given zone (pytz zones need normalize)"""
    local = moment.astimezone(tz)
    if hasattr(tz, 'normalize'):
        local = tz.normalize(local)
    return local


def local_date(moment: datetime, tz: tzinfo) -> date:
    """Calendar date of an instant in the given zone"""
    return to_local(moment, tz).date()


def next_calendar_day(day: Optional[date] = None, moment: Optional[datetime] = None,
                      tz: Optional[tzinfo] = None) -> date:
    """
    The day after `day`, or the day after the local date of `moment`.

    Args:
        day: Calendar date to advance, takes precedence when given
        moment: Aware instant whose local date is advanced when `day` is None
        tz: Zone used to take the local date of `moment`

    Returns:
        The following calendar date
    """
    if day is None:
        if moment is None:
            moment = utc_now()
        day = local_date(moment, tz or timezone.utc)
    elif isinstance(day, datetime):
        day = day.date()
    return day + timedelta(days=1)


def get_config_float(config, section: str, key: str, default: float, logger=None) -> float:
    """Read a float option, falling back to `default` with a warning if it does not parse"""
    try:
        return config.getfloat(section, key, fallback=default)
    except ValueError:
        if logger:
            logger.warning(f"Invalid {key} '{config.get(section, key)}', using {default}")
        return default
