"""Tests for deadline_escalator.driver."""

from __future__ import annotations

import logging
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from deadline_escalator.driver import (
    DriverState,
    SchedulerDriver,
    xprintidle_probe,
)
from deadline_escalator.errors import SchedulerStartError


class FakeTimer:
    """Stands in for threading.Timer; fire() runs the callback inline."""

    def __init__(self, interval, function, args=()):
        self.interval = interval
        self.function = function
        self.args = args
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function(*self.args)


class TimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, interval, function, args=()):
        timer = FakeTimer(interval, function, args)
        self.timers.append(timer)
        return timer

    @property
    def last(self):
        return self.timers[-1]


def _driver(tick=None, **kwargs):
    factory = TimerFactory()
    tick = tick or MagicMock()
    driver = SchedulerDriver(tick, timer_factory=factory, **kwargs)
    return driver, factory, tick


# ---------------------------------------------------------------------------
# Fixed interval
# ---------------------------------------------------------------------------


class TestInterval:
    def test_start_arms_daemon_timer(self):
        driver, factory, tick = _driver()
        driver.start(50)
        assert driver.state is DriverState.RUNNING
        assert driver.running
        assert driver.interval == 50
        assert factory.last.interval == 50
        assert factory.last.daemon is True
        assert factory.last.started
        tick.assert_not_called()

    def test_expiry_ticks_and_rearms(self):
        driver, factory, tick = _driver()
        driver.start(10)
        factory.last.fire()
        tick.assert_called_once_with()
        assert len(factory.timers) == 2
        assert factory.last.interval == 10
        assert factory.last.started

    def test_zero_interval_rejected(self):
        driver, factory, _ = _driver()
        with pytest.raises(SchedulerStartError):
            driver.start(0)
        assert factory.timers == []
        assert driver.state is DriverState.STOPPED

    def test_stop_cancels(self):
        driver, factory, _ = _driver()
        driver.start(10)
        driver.stop()
        assert factory.last.cancelled
        assert driver.state is DriverState.STOPPED

    def test_stop_is_idempotent(self):
        driver, _, _ = _driver()
        driver.stop()
        driver.start(10)
        driver.stop()
        driver.stop()
        assert not driver.running

    def test_stale_timer_does_not_tick(self):
        driver, factory, tick = _driver()
        driver.start(10)
        stale = factory.last
        driver.stop()
        stale.fire()
        tick.assert_not_called()
        assert len(factory.timers) == 1

    def test_restart_replaces_timer(self):
        driver, factory, tick = _driver()
        driver.start(10)
        first = factory.last
        driver.start(30)
        assert first.cancelled
        assert factory.last.interval == 30
        first.fire()
        tick.assert_not_called()

    def test_tick_exception_logged_and_rearmed(self, caplog):
        tick = MagicMock(side_effect=RuntimeError("boom"))
        driver, factory, _ = _driver(tick)
        driver.start(10)
        with caplog.at_level(logging.ERROR):
            factory.last.fire()
        assert "Scheduler tick failed" in caplog.text
        assert len(factory.timers) == 2

    def test_timer_thread_failure(self):
        def broken_factory(interval, function, args=()):
            timer = FakeTimer(interval, function, args)
            timer.start = MagicMock(side_effect=RuntimeError("can't start new thread"))
            return timer

        driver = SchedulerDriver(MagicMock(), timer_factory=broken_factory)
        with pytest.raises(SchedulerStartError, match="Cannot start timer thread"):
            driver.start(10)
        assert driver.state is DriverState.STOPPED


# ---------------------------------------------------------------------------
# Idle mode
# ---------------------------------------------------------------------------


class TestIdleMode:
    def test_polls_at_poll_interval(self):
        probe = MagicMock(return_value=0.0)
        driver, factory, _ = _driver(idle_probe=probe, idle_poll_seconds=2.0)
        driver.start(-300)
        assert driver.interval == -300
        assert factory.last.interval == 2.0

    def test_fires_once_per_idle_stretch(self):
        idle = [0.0]
        driver, factory, tick = _driver(idle_probe=lambda: idle[0])
        driver.start(-300)

        idle[0] = 100.0
        factory.last.fire()
        tick.assert_not_called()

        idle[0] = 300.0
        factory.last.fire()
        idle[0] = 600.0
        factory.last.fire()
        assert tick.call_count == 1

        idle[0] = 1.0
        factory.last.fire()
        idle[0] = 301.0
        factory.last.fire()
        assert tick.call_count == 2

    def test_unavailable_probe_rejected(self):
        driver, factory, _ = _driver(idle_probe=lambda: None)
        with pytest.raises(SchedulerStartError, match="idle probe"):
            driver.start(-60)
        assert factory.timers == []

    def test_probe_failure_while_running(self, caplog):
        readings = iter([0.0, None])
        driver, factory, tick = _driver(idle_probe=lambda: next(readings))
        driver.start(-60)
        with caplog.at_level(logging.WARNING):
            factory.last.fire()
        assert "Idle time unavailable" in caplog.text
        tick.assert_not_called()
        assert len(factory.timers) == 2

    def test_switch_back_to_interval(self):
        driver, factory, tick = _driver(idle_probe=lambda: 1000.0)
        driver.start(-60)
        idle_timer = factory.last
        driver.start(20)
        idle_timer.fire()
        tick.assert_not_called()
        assert factory.last.interval == 20


# ---------------------------------------------------------------------------
# xprintidle
# ---------------------------------------------------------------------------


class TestXprintidleProbe:
    def test_reads_milliseconds(self):
        completed = subprocess.CompletedProcess(["xprintidle"], 0, stdout="4500\n")
        with patch("subprocess.run", return_value=completed):
            assert xprintidle_probe() == 4.5

    def test_missing_binary(self):
        with patch("subprocess.run", side_effect=FileNotFoundError):
            assert xprintidle_probe() is None

    def test_garbage_output(self):
        completed = subprocess.CompletedProcess(["xprintidle"], 0, stdout="n/a")
        with patch("subprocess.run", return_value=completed):
            assert xprintidle_probe() is None
