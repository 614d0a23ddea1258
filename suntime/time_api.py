#!/usr/bin/env python3
"""
Time API client for SunTime
Fetches sunrise/sunset instants for a location from api.sunrise-sunset.org
"""

import asyncio
import json
from datetime import date, datetime, timezone
from typing import Any, Optional
from urllib.parse import urlencode

import aiohttp

from .models import SunTimes, TODAY
from .utils import get_config_float, validate_coordinates


DEFAULT_API_URL = "http://api.sunrise-sunset.org/json"
DEFAULT_TIMEOUT = 10  # seconds

# Request dates are locale invariant yyyy-MM-dd
REQUEST_DATE_FORMAT = "%Y-%m-%d"
# formatted=0 responses are ISO 8601 with a numeric offset (yyyy-MM-dd'T'HH:mm:ssZZZZZ)
RESPONSE_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S%z"
# sunrise-sunset.org reports 1970-01-01T00:00:01+00:00 when the sun never rises or sets
MIN_VALID_YEAR = 1971


class TimeAPIError(Exception):
    """Base class for every way a fetch can fail to produce SunTimes"""


class InvalidRequest(TimeAPIError):
    """The request URL could not be built from the given parameters"""


class FetchFailed(TimeAPIError):
    """Transport level failure: connection error, timeout or HTTP error status"""


class MalformedResponse(TimeAPIError):
    """The response was not the expected JSON envelope"""


def format_request_date(target) -> str:
    """Render the date query parameter: 'today' or yyyy-MM-dd"""
    if target == TODAY:
        return TODAY
    if isinstance(target, date):
        return target.strftime(REQUEST_DATE_FORMAT)
    raise InvalidRequest(f"Unusable request date: {target!r}")


def build_url(base_url: str, latitude: float, longitude: float, target) -> str:
    """
    Build the request URL for a location and date.

    Args:
        base_url: API endpoint, e.g. http://api.sunrise-sunset.org/json
        latitude: Latitude in degrees, [-90, 90]
        longitude: Longitude in degrees, [-180, 180]
        target: A date or the TODAY sentinel

    Returns:
        The full request URL with formatted=0

    Raises:
        InvalidRequest: if the coordinates or the date are unusable
    """
    if not base_url:
        raise InvalidRequest("No API URL configured")
    if not validate_coordinates(latitude, longitude):
        raise InvalidRequest(f"Coordinates out of range: {latitude}, {longitude}")

    query = urlencode([
        ('lat', repr(float(latitude))),
        ('lng', repr(float(longitude))),
        ('date', format_request_date(target)),
        ('formatted', '0'),
    ])
    separator = '&' if '?' in base_url else '?'
    return f"{base_url}{separator}{query}"


def parse_timestamp(value: Any) -> datetime:
    """Parse one formatted=0 timestamp into an aware UTC datetime"""
    if not isinstance(value, str):
        raise MalformedResponse(f"Timestamp is not a string: {value!r}")
    try:
        parsed = datetime.strptime(value.strip(), RESPONSE_TIME_FORMAT)
    except ValueError as e:
        raise MalformedResponse(f"Unparsable timestamp '{value}': {e}") from e
    return parsed.astimezone(timezone.utc)


def parse_response(payload: Any) -> SunTimes:
    """
    Extract sunrise and sunset from a decoded response body.

    Raises:
        MalformedResponse: on any deviation from the expected envelope
    """
    if not isinstance(payload, dict):
        raise MalformedResponse("Response is not a JSON object")

    status = payload.get('status')
    if status is not None and status != 'OK':
        raise MalformedResponse(f"API reported status {status}")

    results = payload.get('results')
    if not isinstance(results, dict):
        raise MalformedResponse("Response has no 'results' object")

    for key in ('sunrise', 'sunset'):
        if key not in results:
            raise MalformedResponse(f"Response results missing '{key}'")

    times = SunTimes(
        sunrise=parse_timestamp(results['sunrise']),
        sunset=parse_timestamp(results['sunset']),
    )

    # Polar day/night: the API answers with its epoch placeholder instead of a time
    if times.sunrise.year < MIN_VALID_YEAR or times.sunset.year < MIN_VALID_YEAR:
        raise MalformedResponse("No sunrise/sunset on this date (placeholder times returned)")

    return times


class TimeAPIClient:
    """Async client for the sunrise/sunset API"""

    def __init__(self, app, session: Optional[aiohttp.ClientSession] = None):
        self.app = app
        self.logger = app.logger
        self.base_url = app.config.get('External_Data', 'sun_api_url', fallback=DEFAULT_API_URL)
        self.timeout = get_config_float(app.config, 'External_Data', 'sun_api_timeout', DEFAULT_TIMEOUT, self.logger)
        if self.timeout <= 0:
            self.logger.warning(f"Invalid sun_api_timeout '{self.timeout}', using {DEFAULT_TIMEOUT}")
            self.timeout = DEFAULT_TIMEOUT
        self.session = session
        self._owns_session = session is None

    def build_url(self, latitude: float, longitude: float, target) -> str:
        return build_url(self.base_url, latitude, longitude, target)

    async def fetch(self, latitude: float, longitude: float, target) -> SunTimes:
        """
        Fetch sunrise/sunset for a location and date.

        Raises:
            InvalidRequest: URL could not be built
            FetchFailed: transport failure or non-200 status
            MalformedResponse: body is not the expected JSON envelope
        """
        url = self.build_url(latitude, longitude, target)
        self.logger.debug(f"Requesting sun times: {url}")

        # Create session if it doesn't exist
        if self.session is None:
            self.session = aiohttp.ClientSession()
            self._owns_session = True

        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with self.session.get(url, timeout=timeout) as response:
                if response.status != 200:
                    raise FetchFailed(f"API request failed with status {response.status}")
                body = await response.text()
        except asyncio.TimeoutError as e:
            raise FetchFailed("API request timed out") from e
        except aiohttp.ClientError as e:
            raise FetchFailed(f"API request failed: {e}") from e

        try:
            payload = json.loads(body)
        except json.JSONDecodeError as e:
            raise MalformedResponse(f"Failed to parse API response: {e}") from e

        return parse_response(payload)

    async def close(self):
        """Close the HTTP session if this client created it"""
        if self.session is not None and self._owns_session:
            await self.session.close()
            self.session = None
