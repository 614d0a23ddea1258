# tests/conftest.py
"""
Pytest configuration for the SunTime suite.

- Registers Hypothesis profiles for local dev and CI.
- Pins the process TZ to UTC so "system timezone" fallbacks are deterministic.
- Provides a minimal app object plus fake API client/session doubles.
"""

import asyncio
import configparser
import logging
import os
import time

import pytest
from hypothesis import settings, HealthCheck

from suntime.i18n import Translator
from suntime.utils import get_timezone


# ──────────────────────────────────────────────────────────────────────────────
# Hypothesis profiles
# ──────────────────────────────────────────────────────────────────────────────
settings.register_profile(
    "dev",
    settings(
        deadline=None,
        max_examples=60,
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    ),
)
settings.register_profile(
    "ci",
    settings(
        deadline=None,
        max_examples=120,
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    ),
)

_profile = (
    "ci"
    if (os.getenv("CI") or os.getenv("GITHUB_ACTIONS"))
    else os.getenv("HYPOTHESIS_PROFILE", "dev")
)
settings.load_profile(_profile)


def pytest_report_header(config: pytest.Config) -> str:
    return f"Hypothesis profile: '{_profile}'"


@pytest.fixture(scope="session", autouse=True)
def freeze_tz_env():
    prev = os.environ.get("TZ")
    os.environ["TZ"] = "UTC"
    if hasattr(time, "tzset"):
        time.tzset()
    try:
        yield
    finally:
        if prev is None:
            os.environ.pop("TZ", None)
        else:
            os.environ["TZ"] = prev
        if hasattr(time, "tzset"):
            time.tzset()


# ──────────────────────────────────────────────────────────────────────────────
# Minimal app
# ──────────────────────────────────────────────────────────────────────────────

DEFAULT_SECTIONS = {
    'SunTime': {'timezone': 'UTC', 'language': 'en'},
    'Scheduler': {'debounce_seconds': '0.01'},
}


class MinimalApp:
    """Just the attributes components read from the application object"""

    def __init__(self, config: configparser.ConfigParser):
        self.config = config
        self.logger = logging.getLogger('SunTime.test')
        self.timezone = get_timezone(config.get('SunTime', 'timezone', fallback='UTC'), self.logger)
        self.translator = Translator(config.get('SunTime', 'language', fallback='en'), logger=self.logger)
        self.loop = None
        self.scheduler = None


def build_config(sections=None) -> configparser.ConfigParser:
    config = configparser.ConfigParser()
    merged = {name: dict(values) for name, values in DEFAULT_SECTIONS.items()}
    for name, values in (sections or {}).items():
        merged.setdefault(name, {}).update({k: str(v) for k, v in values.items()})
    config.read_dict(merged)
    return config


@pytest.fixture
def make_app():
    def _make(sections=None) -> MinimalApp:
        return MinimalApp(build_config(sections))
    return _make


@pytest.fixture
def make_config():
    return build_config


# ──────────────────────────────────────────────────────────────────────────────
# Doubles
# ──────────────────────────────────────────────────────────────────────────────

class FakeClient:
    """Stands in for TimeAPIClient.fetch

    `results` may be a SunTimes, an exception instance, or a callable taking
    the call index and target and returning either.
    """

    def __init__(self, results=None, delay: float = 0.0):
        self.results = results
        self.delay = delay
        self.calls = []

    async def fetch(self, latitude, longitude, target):
        index = len(self.calls)
        self.calls.append((latitude, longitude, target))
        delay = self.delay(index) if callable(self.delay) else self.delay
        if delay:
            await asyncio.sleep(delay)
        result = self.results(index, target) if callable(self.results) else self.results
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self):
        pass


class FakeResponse:
    def __init__(self, status: int, body: str):
        self.status = status
        self.body = body

    async def text(self):
        return self.body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Minimal aiohttp.ClientSession double: get() as an async context manager"""

    def __init__(self, status: int = 200, body: str = '', exc: Exception = None):
        self.status = status
        self.body = body
        self.exc = exc
        self.urls = []
        self.closed = False

    def get(self, url, timeout=None):
        self.urls.append(url)
        if self.exc is not None:
            raise self.exc
        return FakeResponse(self.status, self.body)

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_client():
    return FakeClient


@pytest.fixture
def fake_session():
    return FakeSession


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll `predicate` on the running loop until true or timeout"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


@pytest.fixture
def wait_for():
    return wait_until
