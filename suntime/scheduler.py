#!/usr/bin/env python3
"""
Event scheduler for SunTime
Combines location fixes with recompute signals, debounces them, fetches
sun times and re-arms itself for the next sunrise or sunset
"""

import asyncio
from datetime import date, datetime, timedelta
from typing import Optional

from .models import DisplayState, EventLabel, GeoFix, RecomputeSignal, SunTimes, TODAY
from .time_api import InvalidRequest, TimeAPIError
from .utils import format_coordinates, get_config_float, local_date, next_calendar_day, to_local, utc_now


TRACKING_POLICIES = ('continuous', 'stop_after_fix')
FALLBACK_EVENTS = ('sunset', 'now')
DATE_MODES = ('explicit', 'today')


def select_relevant_event(times: SunTimes, now: datetime, fallback: str = 'sunset') -> DisplayState:
    """
    Pick the event to show: the next of sunrise/sunset.

    When both are already past, fallback 'sunset' shows the (past) sunset and
    fallback 'now' shows a sunset at the current instant.
    """
    if times.sunrise > now:
        return DisplayState(EventLabel.SUNRISE, times.sunrise)
    if times.sunset > now:
        return DisplayState(EventLabel.SUNSET, times.sunset)
    if fallback == 'now':
        return DisplayState(EventLabel.SUNSET, now)
    return DisplayState(EventLabel.SUNSET, times.sunset)


class EventScheduler:
    """Keeps the display on the next sunrise/sunset for the latest location

    All state lives on one asyncio loop. Each settled (fix, signal) pair
    starts a new cycle with a new generation; results from older generations
    are dropped. Only the most recently armed wake timer may fire.
    """

    def __init__(self, app, client, location_source, display, clock=None):
        self.app = app
        self.logger = app.logger
        self.client = client
        self.location_source = location_source
        self.display = display
        self.timezone = app.timezone
        self.clock = clock or utc_now

        config = app.config
        self.debounce_seconds = get_config_float(config, 'Scheduler', 'debounce_seconds', 1.0, self.logger)
        self.event_buffer_seconds = get_config_float(config, 'Scheduler', 'event_buffer_seconds', 10.0, self.logger)
        self.retry_seconds = get_config_float(config, 'Scheduler', 'retry_seconds', 0.0, self.logger)
        self.tracking = config.get('Scheduler', 'tracking', fallback='continuous').strip().lower()
        self.fallback_event = config.get('Scheduler', 'fallback_event', fallback='sunset').strip().lower()
        self.date_mode = config.get('Scheduler', 'date_mode', fallback='explicit').strip().lower()

        # Validate options
        if self.debounce_seconds < 0:
            self.logger.warning(f"Invalid debounce_seconds '{self.debounce_seconds}', using 1.0")
            self.debounce_seconds = 1.0
        if self.event_buffer_seconds < 0:
            self.logger.warning(f"Invalid event_buffer_seconds '{self.event_buffer_seconds}', using 10")
            self.event_buffer_seconds = 10.0
        if self.retry_seconds < 0:
            self.logger.warning(f"Invalid retry_seconds '{self.retry_seconds}', retries disabled")
            self.retry_seconds = 0.0
        if self.tracking not in TRACKING_POLICIES:
            self.logger.warning(f"Invalid tracking '{self.tracking}', using 'continuous'")
            self.tracking = 'continuous'
        if self.fallback_event not in FALLBACK_EVENTS:
            self.logger.warning(f"Invalid fallback_event '{self.fallback_event}', using 'sunset'")
            self.fallback_event = 'sunset'
        if self.date_mode not in DATE_MODES:
            self.logger.warning(f"Invalid date_mode '{self.date_mode}', using 'explicit'")
            self.date_mode = 'explicit'

        self.latest_fix: Optional[GeoFix] = None
        self.latest_signal: Optional[RecomputeSignal] = None
        self.generation = 0
        self.wake_generation = 0
        self.armed_delay: Optional[float] = None
        self.armed_target = None
        self.last_error: Optional[Exception] = None
        self.fetch_count = 0
        self.failure_count = 0
        self.signal_count = 0
        self.state = 'idle'

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._debounce_handle: Optional[asyncio.TimerHandle] = None
        self._wake_handle: Optional[asyncio.TimerHandle] = None
        self._fetch_task: Optional[asyncio.Task] = None
        self._started = False

    def get_current_time(self) -> datetime:
        """Current time in the configured timezone"""
        return to_local(self.clock(), self.timezone)

    @property
    def started(self) -> bool:
        return self._started

    def start(self):
        """Hook up inputs and emit the initial recompute signal (must run on the loop)"""
        if self._started:
            return
        self._loop = asyncio.get_running_loop()
        self._started = True
        self.location_source.subscribe(self._on_fix)
        self.display.on_refresh(self.request_recompute)
        self.logger.info(f"Scheduler started (tracking={self.tracking}, date_mode={self.date_mode}, "
                         f"debounce={self.debounce_seconds}s)")
        self.request_recompute(reason='start')

    def stop(self):
        """Cancel timers and the in-flight fetch and release the inputs"""
        if not self._started:
            return
        self._started = False
        self._cancel_debounce()
        self._cancel_wake()
        if self._fetch_task is not None and not self._fetch_task.done():
            self._fetch_task.cancel()
        self._fetch_task = None
        self.location_source.unsubscribe(self._on_fix)
        self.location_source.stop()
        self.display.remove_refresh(self.request_recompute)
        self.state = 'idle'
        self.logger.info("Scheduler stopped")

    # Inputs

    def request_recompute(self, target=None, reason: str = 'refresh'):
        """Fetch again now, for `target` or for the current day"""
        if not self._started:
            self.logger.debug(f"Ignoring recompute ({reason}): scheduler not started")
            return
        if target is None:
            target = self._default_target()
        self._emit_signal(RecomputeSignal(target, reason))

    def _default_target(self):
        if self.date_mode == 'today':
            return TODAY
        return local_date(self.clock(), self.timezone)

    def _emit_signal(self, signal: RecomputeSignal):
        self.latest_signal = signal
        self.signal_count += 1
        self.logger.debug(f"Recompute signal: {signal.reason} -> {signal.describe()}")
        if not self.location_source.running:
            self.location_source.start()
        self._on_input()

    def _on_fix(self, fix: GeoFix):
        self.latest_fix = fix
        self._on_input()

    def _on_input(self):
        """Either input changed: restart the debounce window for the latest pair"""
        if not self._started:
            return
        if self.latest_signal is None or self.latest_fix is None:
            if self.latest_fix is None:
                self.state = 'awaiting_fix'
            return
        self._cancel_debounce()
        self._debounce_handle = self._loop.call_later(self.debounce_seconds, self._settle)

    def _cancel_debounce(self):
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

    # Cycle

    def _settle(self):
        """The pair has been quiet for the debounce window: start a cycle"""
        self._debounce_handle = None
        fix = self.latest_fix
        signal = self.latest_signal

        self.generation += 1
        generation = self.generation
        if self._fetch_task is not None and not self._fetch_task.done():
            self.logger.debug("Cancelling superseded fetch")
            self._fetch_task.cancel()
        self._fetch_task = None

        if not signal.usable:
            self.logger.debug(f"Skipping cycle {generation}: signal has no usable date")
            return

        self.fetch_count += 1
        self.state = 'fetching'
        self.logger.info(f"Fetching sun times for {format_coordinates(fix.latitude, fix.longitude)} "
                         f"on {signal.describe()} (cycle {generation})")
        self._fetch_task = self._loop.create_task(self._run_cycle(generation, fix, signal))

    async def _run_cycle(self, generation: int, fix: GeoFix, signal: RecomputeSignal):
        """Fetch for one cycle and apply the result if the cycle is still current"""
        try:
            times = await self.client.fetch(fix.latitude, fix.longitude, signal.target_date)
        except TimeAPIError as e:
            if generation == self.generation:
                self._handle_failure(signal, e)
            return
        except Exception as e:
            if generation == self.generation:
                self.logger.exception(f"Unexpected error fetching sun times: {e}")
                self._handle_failure(signal, e)
            return

        if generation != self.generation:
            self.logger.debug(f"Dropping stale result from cycle {generation} (current {self.generation})")
            return

        try:
            self._apply(times, signal)
        except Exception as e:
            self.logger.exception(f"Error applying sun times: {e}")

    def _apply(self, times: SunTimes, signal: RecomputeSignal):
        now = self.clock()
        state = select_relevant_event(times, now, self.fallback_event)

        self.last_error = None
        self.display.show(state)
        self.state = 'displaying'

        if self.tracking == 'stop_after_fix':
            self.location_source.stop()

        time_until_event = (state.time - now).total_seconds()
        if time_until_event < 0:
            # Event already behind us (slow response or clock skew): go straight to tomorrow
            self._cancel_wake()
            if signal.reason == 'event_passed':
                # The next-day answer is behind us too: bad data or a wrong clock, wait for a trigger
                self.logger.warning(f"Next-day {state.label.value} for {signal.describe()} is also in the past, "
                                    f"not stepping further")
                return
            next_day = self._day_after(signal, now)
            self.logger.info(f"{state.label.value.capitalize()} already passed, fetching {next_day.isoformat()}")
            self._emit_signal(RecomputeSignal(next_day, 'event_passed'))
            return

        if state.label == EventLabel.SUNSET:
            target = TODAY if self.date_mode == 'today' else self._day_after(signal, now)
        else:
            target = signal.target_date
        self._arm_wake(time_until_event + self.event_buffer_seconds, RecomputeSignal(target, 'wake'))

    def _day_after(self, signal: RecomputeSignal, now: datetime) -> date:
        today = local_date(now, self.timezone)
        base = signal.target_date
        if isinstance(base, datetime):
            base = base.date()
        if not isinstance(base, date):
            base = today
        return next_calendar_day(day=max(base, today))

    def _handle_failure(self, signal: RecomputeSignal, error: Exception):
        self.last_error = error
        self.failure_count += 1
        self.state = 'armed' if self._wake_handle is not None else 'idle'
        self.logger.warning(f"Sun time fetch failed ({type(error).__name__}): {error}")

        if self.retry_seconds > 0 and not isinstance(error, InvalidRequest):
            self.logger.info(f"Retrying in {self.retry_seconds:.0f}s")
            self._arm_wake(self.retry_seconds, RecomputeSignal(signal.target_date, 'retry'))

    # Wake timer

    def _arm_wake(self, delay: float, signal: RecomputeSignal):
        """Arm the single wake timer, replacing any pending one"""
        self._cancel_wake()
        self.wake_generation += 1
        wake_generation = self.wake_generation
        self.armed_delay = delay
        self.armed_target = signal.target_date
        self._wake_handle = self._loop.call_later(delay, self._on_wake, wake_generation, signal)
        self.state = 'armed'
        self.logger.info(f"⏰ Next update in {timedelta(seconds=int(delay))} ({signal.reason}, {signal.describe()})")

    def _cancel_wake(self):
        if self._wake_handle is not None:
            self._wake_handle.cancel()
            self._wake_handle = None
            self.wake_generation += 1
        self.armed_delay = None
        self.armed_target = None

    def _on_wake(self, wake_generation: int, signal: RecomputeSignal):
        if wake_generation != self.wake_generation:
            self.logger.debug(f"Ignoring stale wake timer {wake_generation} (current {self.wake_generation})")
            return
        self._wake_handle = None
        self.armed_delay = None
        self.armed_target = None
        self.logger.info(f"Wake timer fired ({signal.reason}), recomputing for {signal.describe()}")
        self._emit_signal(signal)
