"""
Tests for the tick scheduler.
"""
from datetime import datetime, timezone

import pytest

from engine.automation.scheduler import Scheduler


FIXED_NOW = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


def make_scheduler(tick, **kwargs):
    kwargs.setdefault("clock", lambda: FIXED_NOW)
    kwargs.setdefault("monotonic", lambda: 0.0)
    return Scheduler(tick, **kwargs)


class TestRunOnce:

    def test_passes_clock_time(self):
        seen = []
        scheduler = make_scheduler(seen.append)

        assert scheduler.run_once() is True
        assert seen == [FIXED_NOW]
        assert scheduler.ticks_run == 1
        assert scheduler.last_tick_at == FIXED_NOW

    def test_tick_exception_is_contained(self):
        def failing(now):
            raise RuntimeError("exchange down")

        scheduler = make_scheduler(failing)
        assert scheduler.run_once() is True
        assert scheduler.ticks_run == 1

    def test_skips_while_tick_in_flight(self):
        """A tick that starts while another is running is skipped, not queued."""
        inner_results = []
        holder = {}

        def reentrant(now):
            inner_results.append(holder["scheduler"].run_once())

        scheduler = make_scheduler(reentrant)
        holder["scheduler"] = scheduler

        assert scheduler.run_once() is True
        assert inner_results == [False]
        assert scheduler.ticks_skipped == 1
        assert scheduler.ticks_run == 1

    def test_invalid_interval(self):
        with pytest.raises(ValueError):
            Scheduler(lambda now: None, interval_seconds=0)


class TestRunForever:

    def test_fixed_cadence(self):
        """Waits are the interval minus the tick's duration."""
        times = iter([0.0, 3.0, 10.0, 12.0, 20.0, 20.5])
        waits = []
        scheduler = Scheduler(
            lambda now: None,
            interval_seconds=10,
            clock=lambda: FIXED_NOW,
            monotonic=lambda: next(times),
            wait=waits.append,
        )

        scheduler.run_forever(max_ticks=3)

        assert scheduler.ticks_run == 3
        assert waits == [7.0, 8.0]

    def test_overrun_waits_zero(self):
        times = iter([0.0, 15.0])
        scheduler = make_scheduler(lambda now: None, interval_seconds=10, monotonic=lambda: next(times))
        assert scheduler.seconds_until_next_tick(scheduler._monotonic()) == 0.0

    def test_stop_from_tick(self):
        holder = {}

        def stopping(now):
            holder["scheduler"].stop()

        waits = []
        scheduler = make_scheduler(stopping, wait=waits.append)
        holder["scheduler"] = scheduler

        scheduler.run_forever()

        assert scheduler.stopped
        assert scheduler.ticks_run == 1
        assert waits == []

    def test_stop_before_start(self):
        seen = []
        scheduler = make_scheduler(seen.append)
        scheduler.stop()
        scheduler.run_forever()
        assert seen == []

    def test_default_clock_uses_market_timezone(self):
        scheduler = Scheduler(lambda now: None)
        now = scheduler.get_current_time()
        assert now.tzinfo is not None
        assert now.utcoffset().total_seconds() == 9 * 3600
