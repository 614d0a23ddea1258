#!/usr/bin/env python3
"""
Location sources for SunTime
Providers that can be started and stopped and deliver GeoFix updates
"""

import asyncio
import re
from typing import Callable, List, Optional

import maidenhead as mh
from geopy.exc import GeopyError
from geopy.geocoders import Nominatim

from .models import GeoFix
from .utils import calculate_distance, format_coordinates, get_config_float


FixCallback = Callable[[GeoFix], None]

GRID_SQUARE_PATTERN = re.compile(r'^[A-Ra-r]{2}(\d{2}([A-Xa-x]{2}(\d{2})?)?)?$')


class LocationSource:
    """Base class for location providers

    Subscribers are called on the event loop with each accepted fix. While
    running, fixes closer than distance_filter_m to the last delivered fix are
    dropped; the first fix after each start always goes through.
    """

    name = "manual"

    def __init__(self, app):
        self.app = app
        self.logger = app.logger
        self.distance_filter_m = get_config_float(app.config, 'Location', 'distance_filter_m', 1000.0, self.logger)
        if self.distance_filter_m < 0:
            self.logger.warning(f"Invalid distance_filter_m '{self.distance_filter_m}', using 0")
            self.distance_filter_m = 0.0
        self._subscribers: List[FixCallback] = []
        self._running = False
        self._last_fix: Optional[GeoFix] = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_fix(self) -> Optional[GeoFix]:
        return self._last_fix

    def subscribe(self, callback: FixCallback):
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: FixCallback):
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def start(self):
        """Start location updates (no-op if already running)"""
        if self._running:
            return
        self._running = True
        self._last_fix = None
        self.logger.info(f"📍 Starting {self.name} location updates")
        self._on_start()

    def stop(self):
        """Stop location updates (no-op if not running)"""
        if not self._running:
            return
        self._running = False
        self.logger.info(f"Stopping {self.name} location updates")
        self._on_stop()

    def _on_start(self):
        pass

    def _on_stop(self):
        pass

    def push_fix(self, fix: GeoFix) -> bool:
        """
        Deliver a fix to subscribers.

        Returns:
            True if the fix was delivered, False if dropped (stopped or filtered)
        """
        if not self._running:
            self.logger.debug(f"Ignoring fix {format_coordinates(fix.latitude, fix.longitude)}: source stopped")
            return False

        if self._last_fix is not None and self.distance_filter_m > 0:
            moved_m = calculate_distance(self._last_fix.latitude, self._last_fix.longitude,
                                         fix.latitude, fix.longitude) * 1000.0
            if moved_m < self.distance_filter_m:
                self.logger.debug(f"Ignoring fix, moved {moved_m:.0f}m (< {self.distance_filter_m:.0f}m)")
                return False

        self._last_fix = fix
        self.logger.debug(f"New fix: {format_coordinates(fix.latitude, fix.longitude)}")
        for callback in list(self._subscribers):
            try:
                callback(fix)
            except Exception as e:
                self.logger.exception(f"Error in location subscriber: {e}")
        return True

    def _push_soon(self, fix: GeoFix):
        """Deliver a fix on the next loop iteration, as a real provider would"""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.push_fix(fix)
            return
        loop.call_soon(self.push_fix, fix)


class ManualLocationSource(LocationSource):
    """Fixes are pushed in by the host with push_fix()"""

    name = "manual"


class StaticLocationSource(LocationSource):
    """Fixed coordinates from config, delivered on every start"""

    name = "static"

    def __init__(self, app, latitude: float, longitude: float):
        super().__init__(app)
        self.fix = GeoFix(latitude, longitude)

    def _on_start(self):
        self._push_soon(self.fix)


class GridSquareLocationSource(StaticLocationSource):
    """Centre of a Maidenhead grid square"""

    name = "grid"

    def __init__(self, app, grid_square: str):
        grid_square = (grid_square or '').strip()
        if not GRID_SQUARE_PATTERN.match(grid_square):
            raise ValueError(f"Invalid Maidenhead grid square: '{grid_square}'")
        latitude, longitude = mh.to_location(grid_square, center=True)
        super().__init__(app, latitude, longitude)
        self.grid_square = grid_square
        self.logger.info(f"Grid square {grid_square} -> {format_coordinates(latitude, longitude)}")


class GeocodedLocationSource(LocationSource):
    """Place name resolved once with Nominatim, then delivered on every start"""

    name = "geocode"

    def __init__(self, app, query: str, geolocator=None):
        super().__init__(app)
        self.query = query
        self.geolocator = geolocator or Nominatim(user_agent="suntime")
        self.fix: Optional[GeoFix] = None
        self._task: Optional[asyncio.Task] = None

    def _on_start(self):
        if self.fix is not None:
            self._push_soon(self.fix)
            return
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._resolve())

    def _on_stop(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _resolve(self):
        """Geocode the configured place in an executor thread"""
        loop = asyncio.get_running_loop()
        try:
            location = await loop.run_in_executor(None, self.geolocator.geocode, self.query)
        except GeopyError as e:
            self.logger.warning(f"Geocoding '{self.query}' failed: {e}")
            self._resolution_failed()
            return
        except Exception as e:
            self.logger.exception(f"Unexpected error geocoding '{self.query}': {e}")
            self._resolution_failed()
            return

        if location is None:
            self.logger.warning(f"No geocoding result for '{self.query}'")
            self._resolution_failed()
            return

        try:
            self.fix = GeoFix(float(location.latitude), float(location.longitude))
        except (TypeError, ValueError) as e:
            self.logger.warning(f"Geocoder returned unusable coordinates for '{self.query}': {e}")
            self._resolution_failed()
            return

        self.logger.info(f"Geocoded '{self.query}' -> {format_coordinates(self.fix.latitude, self.fix.longitude)}")
        self.push_fix(self.fix)

    def _resolution_failed(self):
        # Go idle so the next recompute signal starts (and geocodes) again
        self._task = None
        self.stop()


def create_location_source(app) -> LocationSource:
    """
    Build the location source selected in the [Location] config section.

    Raises:
        ValueError: if the selected source is missing required settings
    """
    source = app.config.get('Location', 'source', fallback='static').strip().lower()

    if source == 'static':
        latitude = app.config.getfloat('Location', 'latitude', fallback=None)
        longitude = app.config.getfloat('Location', 'longitude', fallback=None)
        if latitude is None or longitude is None:
            raise ValueError("[Location] source=static needs latitude and longitude")
        return StaticLocationSource(app, latitude, longitude)

    if source == 'grid':
        return GridSquareLocationSource(app, app.config.get('Location', 'grid_square', fallback=''))

    if source == 'geocode':
        place = app.config.get('Location', 'place', fallback='').strip()
        if not place:
            raise ValueError("[Location] source=geocode needs a place")
        return GeocodedLocationSource(app, place)

    if source == 'manual':
        return ManualLocationSource(app)

    raise ValueError(f"Unknown location source '{source}'")
