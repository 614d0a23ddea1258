#!/usr/bin/env python3
"""
Data models for SunTime
Location fixes, API results, recompute signals and display state
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional, Union


# Sentinel understood by the time API as "the current day at the location"
TODAY = "today"

TargetDate = Union[date, str, None]


@dataclass(frozen=True)
class GeoFix:
    """A single geolocation sample"""
    latitude: float
    longitude: float

    def __post_init__(self):
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"Latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"Longitude out of range: {self.longitude}")


@dataclass(frozen=True)
class SunTimes:
    """Sunrise and sunset instants returned by one API round trip"""
    sunrise: datetime
    sunset: datetime


class EventLabel(Enum):
    SUNRISE = "sunrise"
    SUNSET = "sunset"


@dataclass(frozen=True)
class DisplayState:
    """What the status line shows: which event and when"""
    label: EventLabel
    time: datetime


@dataclass(frozen=True)
class RecomputeSignal:
    """Request to fetch again for the given target date

    target_date is a calendar date, the TODAY sentinel, or None when no
    usable date is known (the cycle is then skipped).
    """
    target_date: TargetDate
    reason: str = "refresh"

    @property
    def usable(self) -> bool:
        return self.target_date == TODAY or isinstance(self.target_date, date)

    def describe(self) -> Optional[str]:
        if self.target_date == TODAY:
            return TODAY
        if isinstance(self.target_date, date):
            return self.target_date.isoformat()
        return None
