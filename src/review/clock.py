"""
Countdown Clock for timed questions.

A single-purpose countdown owned by one SessionEngine:
- start() begins a run that ticks once per interval (1 Hz by default)
- each tick reports the remaining whole seconds, strictly decreasing
- the tick that reaches 0 fires on_expire exactly once, then the run ends
- cancel() ends the run; nothing from a cancelled run ever fires again

The tick source is anything with ``call_later(delay, callback)`` returning a
handle with ``cancel()``. An asyncio event loop fits; tests pass a fake one.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Protocol

from loguru import logger


class TimerHandle(Protocol):
    def cancel(self) -> Any: ...


class TickSource(Protocol):
    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle: ...


class Clock:
    """
    Cancellable 1 Hz countdown.

    Every scheduled tick carries the id of the run that scheduled it. A tick
    whose run id no longer matches is dropped, so a cancel() always wins over
    a tick that was already queued.
    """

    def __init__(self, tick_source: TickSource | None = None, interval: float = 1.0):
        if interval <= 0:
            raise ValueError("tick interval must be positive")
        self._tick_source = tick_source
        self._source: TickSource | None = None
        self.interval = interval
        self._run_id = 0
        self._handle: TimerHandle | None = None
        self._remaining = 0
        self._running = False
        self._on_tick: Callable[[int], None] | None = None
        self._on_expire: Callable[[], None] | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def remaining(self) -> int:
        """Whole seconds left in the current run (0 when idle)."""
        return self._remaining if self._running else 0

    def start(
        self,
        duration_seconds: int,
        on_tick: Callable[[int], None] | None = None,
        on_expire: Callable[[], None] | None = None,
    ) -> None:
        """
        Begin a countdown, cancelling any run already in progress.

        Args:
            duration_seconds: Whole seconds to count down from (> 0)
            on_tick: Called with the remaining seconds after every tick
            on_expire: Called once when the countdown reaches 0
        """
        if isinstance(duration_seconds, bool) or not isinstance(duration_seconds, int):
            raise TypeError("duration must be a whole number of seconds")
        if duration_seconds <= 0:
            raise ValueError("duration must be positive")

        self.cancel()
        self._source = self._tick_source or asyncio.get_running_loop()

        self._run_id += 1
        self._remaining = duration_seconds
        self._on_tick = on_tick
        self._on_expire = on_expire
        self._running = True
        self._schedule(self._run_id)
        logger.debug(f"Clock run {self._run_id} started: {duration_seconds}s")

    def cancel(self) -> None:
        """Stop the current run. Safe to call any number of times."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._running:
            logger.debug(f"Clock run {self._run_id} cancelled at {self._remaining}s")
        self._running = False
        self._on_tick = None
        self._on_expire = None
        # Invalidate anything still queued for the old run
        self._run_id += 1

    def _schedule(self, run_id: int) -> None:
        self._handle = self._source.call_later(self.interval, lambda: self._tick(run_id))

    def _tick(self, run_id: int) -> None:
        if run_id != self._run_id or not self._running:
            return

        self._handle = None
        self._remaining -= 1
        on_tick = self._on_tick
        if on_tick is not None:
            on_tick(self._remaining)
            # on_tick may have cancelled or restarted the clock
            if run_id != self._run_id:
                return

        if self._remaining > 0:
            self._schedule(run_id)
            return

        on_expire = self._on_expire
        self._running = False
        self._on_tick = None
        self._on_expire = None
        logger.debug(f"Clock run {run_id} expired")
        if on_expire is not None:
            on_expire()
