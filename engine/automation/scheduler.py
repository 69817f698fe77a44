"""
Scheduler for the fixed-cadence trading tick.

Owns the stop token and the clock so ticks can be driven without real sleeps
in tests and the loop can be stopped deterministically from a signal handler.
"""
import logging
import threading
import time
from datetime import datetime
from typing import Any, Callable, Optional

import pytz

from ..shared.defaults import TICK_INTERVAL_SECONDS, MARKET_TIMEZONE


logger = logging.getLogger(__name__)


class Scheduler:
    """
    Runs a tick callback every `interval_seconds`.

    Responsibilities:
    - Provide the current time (injected clock, market timezone by default)
    - Skip a tick while the previous one is still in flight
    - Keep a fixed cadence: the wait after a tick is the interval minus the tick's duration
    - Stop promptly when stop() is called
    """

    def __init__(
        self,
        tick: Callable[[datetime], Any],
        interval_seconds: float = TICK_INTERVAL_SECONDS,
        timezone: str = MARKET_TIMEZONE,
        clock: Optional[Callable[[], datetime]] = None,
        monotonic: Callable[[], float] = time.monotonic,
        wait: Optional[Callable[[float], Any]] = None,
    ):
        """
        Initialize scheduler.

        Args:
            tick: Callback run on every tick; receives the tick time
            interval_seconds: Seconds between tick starts (default: 10)
            timezone: Timezone for the default clock (default: Asia/Seoul)
            clock: Returns the current time (default: now in `timezone`)
            monotonic: Monotonic seconds used to measure tick duration
            wait: Sleeps for the given seconds (default: waits on the stop token,
                  so stop() interrupts the sleep)
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be > 0, got {interval_seconds}")

        self.tick = tick
        self.interval_seconds = interval_seconds
        self.tz = pytz.timezone(timezone)
        self._clock = clock or (lambda: datetime.now(self.tz))
        self._monotonic = monotonic
        self._stop_event = threading.Event()
        self._wait = wait or self._stop_event.wait
        self._in_flight = threading.Lock()

        self.ticks_run = 0
        self.ticks_skipped = 0
        self.last_tick_at: Optional[datetime] = None

    def get_current_time(self) -> datetime:
        """Get current time from the injected clock."""
        return self._clock()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self):
        """Request the loop to stop; an in-flight tick runs to completion."""
        logger.info("Scheduler stop requested")
        self._stop_event.set()

    def run_once(self) -> bool:
        """
        Run a single tick unless one is already running.

        Returns:
            True if the tick ran, False if it was skipped
        """
        if not self._in_flight.acquire(blocking=False):
            self.ticks_skipped += 1
            logger.warning("Previous tick still running, skipping this tick")
            return False

        try:
            now = self.get_current_time()
            try:
                self.tick(now)
            except Exception as e:
                logger.exception(f"Tick failed: {e}")
            self.ticks_run += 1
            self.last_tick_at = now
            return True
        finally:
            self._in_flight.release()

    def seconds_until_next_tick(self, tick_started: float) -> float:
        """Remaining wait so ticks start every interval_seconds (0 if the tick overran)."""
        elapsed = self._monotonic() - tick_started
        if elapsed > self.interval_seconds:
            logger.warning(
                f"Tick took {elapsed:.1f}s, longer than the {self.interval_seconds}s interval"
            )
        return max(0.0, self.interval_seconds - elapsed)

    def run_forever(self, max_ticks: Optional[int] = None):
        """
        Block running ticks until stop() is called.

        Args:
            max_ticks: Stop after this many ticks (None = run until stopped)
        """
        logger.info(f"Scheduler started (interval {self.interval_seconds}s)")
        while not self.stopped:
            started = self._monotonic()
            self.run_once()

            if max_ticks is not None and self.ticks_run >= max_ticks:
                break
            if self.stopped:
                break

            self._wait(self.seconds_until_next_tick(started))
        logger.info(f"Scheduler stopped after {self.ticks_run} tick(s)")
