"""Scheduler driver: the repeating timer that runs engine ticks.

A positive interval re-arms a ``threading.Timer`` every ``interval``
seconds. A negative interval switches to idle mode: the host's idle time
is polled and one tick runs each time it reaches ``abs(interval)``; the
next idle tick waits until the user has been active again.
"""

from __future__ import annotations

import enum
import logging
import subprocess
import threading
from collections.abc import Callable
from typing import Any

from deadline_escalator.errors import SchedulerStartError

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 50
DEFAULT_IDLE_POLL_SECONDS = 5.0

IdleProbe = Callable[[], "float | None"]


class DriverState(str, enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"


def xprintidle_probe() -> float | None:
    """Seconds since the last X11 input event, or None if unavailable."""
    try:
        result = subprocess.run(
            ["xprintidle"],
            capture_output=True,
            text=True,
            check=True,
            timeout=5,
        )
        return int(result.stdout.strip()) / 1000.0
    except (
        FileNotFoundError,
        subprocess.CalledProcessError,
        subprocess.TimeoutExpired,
        ValueError,
    ):
        return None


class SchedulerDriver:
    """Owns the tick timer and its start/stop lifecycle.

    Args:
        tick: Called once per timer expiry. Exceptions are logged.
        idle_probe: Returns host idle seconds; defaults to ``xprintidle``.
        idle_poll_seconds: How often idle mode samples the probe.
        timer_factory: ``threading.Timer`` compatible constructor.
    """

    def __init__(
        self,
        tick: Callable[[], Any],
        *,
        idle_probe: IdleProbe | None = None,
        idle_poll_seconds: float = DEFAULT_IDLE_POLL_SECONDS,
        timer_factory: Callable[..., Any] = threading.Timer,
    ) -> None:
        self._tick = tick
        self._idle_probe = idle_probe
        self._idle_poll_seconds = idle_poll_seconds
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._generation = 0
        self._timer: Any = None
        self._state = DriverState.STOPPED
        self._interval: float | None = None
        self._idle_fired = False

    @property
    def state(self) -> DriverState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is DriverState.RUNNING

    @property
    def interval(self) -> float | None:
        return self._interval

    def start(self, interval_seconds: float = DEFAULT_INTERVAL) -> None:
        """Start ticking; restarts if already running.

        Raises:
            SchedulerStartError: On a zero interval, an unusable idle probe,
                or if the timer thread cannot be started.
        """
        if not interval_seconds:
            raise SchedulerStartError("Interval must be non-zero")
        self.stop()

        if interval_seconds < 0:
            if self._idle_probe is None:
                self._idle_probe = xprintidle_probe
            if self._idle_probe() is None:
                raise SchedulerStartError(
                    "Idle mode needs a working idle probe (is xprintidle installed?)"
                )
            delay = self._idle_poll_seconds
            callback = self._on_idle_poll
        else:
            delay = interval_seconds
            callback = self._on_interval

        with self._lock:
            self._generation += 1
            generation = self._generation
            self._interval = interval_seconds
            self._idle_fired = False
            self._state = DriverState.RUNNING
        try:
            self._arm(generation, delay, callback)
        except RuntimeError as exc:
            self.stop()
            raise SchedulerStartError(f"Cannot start timer thread: {exc}") from exc
        logger.info(
            "Scheduler started (%s %ss)",
            "idle" if interval_seconds < 0 else "every",
            abs(interval_seconds),
        )

    def stop(self) -> None:
        """Cancel the pending timer. Safe to call when already stopped."""
        with self._lock:
            self._generation += 1
            timer, self._timer = self._timer, None
            was_running = self._state is DriverState.RUNNING
            self._state = DriverState.STOPPED
        if timer is not None:
            timer.cancel()
        if was_running:
            logger.info("Scheduler stopped")

    # -- timer plumbing ---------------------------------------------------------

    def _current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation

    def _arm(self, generation: int, delay: float, callback: Callable) -> None:
        with self._lock:
            if generation != self._generation:
                return
            timer = self._timer_factory(delay, callback, args=(generation,))
            timer.daemon = True
            self._timer = timer
            timer.start()

    def _run_tick(self) -> None:
        try:
            self._tick()
        except Exception:
            logger.exception("Scheduler tick failed")

    def _on_interval(self, generation: int) -> None:
        if not self._current(generation):
            return
        self._run_tick()
        self._arm(generation, self._interval or DEFAULT_INTERVAL, self._on_interval)

    def _on_idle_poll(self, generation: int) -> None:
        if not self._current(generation):
            return
        threshold = abs(self._interval or DEFAULT_INTERVAL)
        idle = self._idle_probe() if self._idle_probe else None
        if idle is None:
            logger.warning("Idle time unavailable, skipping idle check")
        elif idle >= threshold:
            if not self._idle_fired:
                self._idle_fired = True
                self._run_tick()
        else:
            self._idle_fired = False
        self._arm(generation, self._idle_poll_seconds, self._on_idle_poll)
