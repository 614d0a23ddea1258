#!/usr/bin/env python3
"""
Display ports for SunTime
Render the current DisplayState and route the user's refresh action back
"""

from datetime import tzinfo
from typing import Callable, List, Optional

from .i18n import Translator
from .models import DisplayState, EventLabel
from .utils import to_local


RefreshCallback = Callable[[], None]


def format_time(state: DisplayState, translator: Translator, tz: tzinfo) -> str:
    """Short local time for the state's instant, e.g. '10:00'"""
    time_format = translator.translate('display.time_format')
    if time_format == 'display.time_format':
        time_format = '%H:%M'
    return to_local(state.time, tz).strftime(time_format)


def format_status(state: DisplayState, translator: Translator, tz: tzinfo) -> str:
    """
    Status line for a display state: a glyph per event followed by the time.

    Args:
        state: Event label and instant
        translator: Source of the glyph templates and time format
        tz: Zone the time is shown in

    Returns:
        e.g. '☀️ 06:12' for sunrise or '🌑 20:41' for sunset
    """
    key = 'display.sunrise' if state.label == EventLabel.SUNRISE else 'display.sunset'
    return translator.translate(key, time=format_time(state, translator, tz))


class DisplayPort:
    """Base display: keeps the status line and the refresh action"""

    def __init__(self, app):
        self.app = app
        self.logger = app.logger
        self.translator: Translator = app.translator
        self.timezone: tzinfo = app.timezone
        self.state: Optional[DisplayState] = None
        self.status_text = self.translator.translate('display.waiting')
        self._refresh_callbacks: List[RefreshCallback] = []

    def show(self, state: DisplayState):
        """Render a new display state"""
        text = format_status(state, self.translator, self.timezone)
        changed = text != self.status_text
        self.state = state
        self.status_text = text
        self.render(state, text, changed)

    def render(self, state: DisplayState, text: str, changed: bool):
        """Present the status line; subclasses override"""
        pass

    def describe(self, state: DisplayState) -> str:
        """Human readable description for logs, e.g. 'Sunrise at 06:12'"""
        return self.translator.translate(
            'messages.status_updated',
            event=self.translator.translate(f'events.{state.label.value}'),
            time=format_time(state, self.translator, self.timezone),
        )

    def on_refresh(self, callback: RefreshCallback):
        if callback not in self._refresh_callbacks:
            self._refresh_callbacks.append(callback)

    def remove_refresh(self, callback: RefreshCallback):
        if callback in self._refresh_callbacks:
            self._refresh_callbacks.remove(callback)

    def request_refresh(self):
        """The user asked for a refresh"""
        self.logger.info("🔄 Refresh requested")
        for callback in list(self._refresh_callbacks):
            try:
                callback()
            except Exception as e:
                self.logger.exception(f"Error in refresh handler: {e}")


class ConsoleDisplay(DisplayPort):
    """Prints the status line to stdout whenever it changes"""

    def render(self, state: DisplayState, text: str, changed: bool):
        self.logger.info(f"🌅 Status: {self.describe(state)}")
        if changed:
            print(text, flush=True)
