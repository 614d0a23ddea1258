#!/usr/bin/env python3
"""
Core application object for SunTime
Loads configuration, sets up logging and wires the components together
"""

import asyncio
import configparser
import logging
import os
from typing import Optional

from .display import ConsoleDisplay, DisplayPort
from .i18n import Translator
from .location import LocationSource, create_location_source
from .scheduler import EventScheduler
from .time_api import TimeAPIClient
from .utils import get_timezone


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class SunTimeApp:
    """Owns config, logger, translator and the scheduler with its collaborators"""

    def __init__(self, config_path: str = "config.ini", config: Optional[configparser.ConfigParser] = None):
        self.config_path = config_path
        self.config = config if config is not None else self._load_config(config_path)
        self._setup_logging()

        timezone_str = self.config.get('SunTime', 'timezone', fallback='')
        self.timezone = get_timezone(timezone_str, self.logger)
        self.translator = Translator(self.config.get('SunTime', 'language', fallback='en'), logger=self.logger)

        self.client: Optional[TimeAPIClient] = None
        self.location_source: Optional[LocationSource] = None
        self.display: Optional[DisplayPort] = None
        self.scheduler: Optional[EventScheduler] = None
        self.web_viewer = None
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop_event: Optional[asyncio.Event] = None

    def _load_config(self, config_path: str) -> configparser.ConfigParser:
        """Load configuration from file (missing file means all defaults)"""
        config = configparser.ConfigParser()
        if os.path.exists(config_path):
            config.read(config_path, encoding='utf-8')
        return config

    def _setup_logging(self):
        """Named logger with console and optional file output"""
        level_name = self.config.get('Logging', 'log_level', fallback='INFO').upper()
        level = getattr(logging, level_name, None)
        invalid_level = not isinstance(level, int)
        if invalid_level:
            level = logging.INFO

        self.logger = logging.getLogger('SunTime')
        self.logger.setLevel(level)

        # Remove existing handlers to avoid duplicates
        self.logger.handlers.clear()

        formatter = logging.Formatter(LOG_FORMAT)
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        self.logger.addHandler(console_handler)

        log_file = self.config.get('Logging', 'log_file', fallback='').strip()
        if log_file:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

        # Prevent propagation to root logger to avoid duplicate messages
        self.logger.propagate = False

        if invalid_level:
            self.logger.warning(f"Invalid log_level '{level_name}', using INFO")

    def build(self, display: Optional[DisplayPort] = None, location_source: Optional[LocationSource] = None,
              client: Optional[TimeAPIClient] = None, clock=None) -> EventScheduler:
        """Create the components, using any that were passed in"""
        self.client = client or TimeAPIClient(self)
        self.location_source = location_source or create_location_source(self)

        if display is None:
            if self.config.getboolean('Web_Viewer', 'enabled', fallback=False):
                from .web_viewer.app import StatusViewer
                display = StatusViewer(self)
                self.web_viewer = display
            else:
                display = ConsoleDisplay(self)
        self.display = display

        self.scheduler = EventScheduler(self, self.client, self.location_source, self.display, clock=clock)
        return self.scheduler

    def request_refresh(self):
        """Thread-safe refresh, e.g. from a signal handler"""
        if self.loop is None or self.display is None:
            return
        self.loop.call_soon_threadsafe(self.display.request_refresh)

    def request_stop(self):
        """Thread-safe shutdown request"""
        if self.loop is None or self._stop_event is None:
            return
        self.loop.call_soon_threadsafe(self._stop_event.set)

    async def run(self):
        """Start everything and run until request_stop()"""
        if self.scheduler is None:
            self.build()
        self.loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()

        if self.web_viewer is not None:
            self.web_viewer.start()

        self.scheduler.start()
        self.logger.info("☀️ SunTime running")
        try:
            await self._stop_event.wait()
        finally:
            await self.shutdown()

    async def shutdown(self):
        """Stop the scheduler and release network resources"""
        if self.scheduler is not None:
            self.scheduler.stop()
        if self.client is not None:
            await self.client.close()
        self.logger.info("SunTime stopped")
