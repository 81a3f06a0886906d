"""
Adaptive request pacing for one shop.

Remote shop APIs throttle with a leaky bucket whose limit is not published.
The governor ticks at an interval that halves its speed whenever a request
is throttled and creeps back up by a fixed step after every success, so it
settles just under the shop's real limit without knowing it.
"""
import asyncio
import threading
import time
from typing import Awaitable, Callable, Optional

from app.config import get_settings
from app.utils.logger import log


class AdaptiveRateGovernor:
    """
    Periodic timer with a self-tuning interval

    Owned by a single shop sync worker. Only one caller may wait on it at a
    time; ticks that pass while nobody waits are not queued (at most one is
    delivered immediately to the next caller).
    """

    def __init__(
        self,
        initial_interval: float = 0.2,
        min_interval: float = 0.1,
        max_interval: float = 1.0,
        step: float = 0.05,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        name: str = ""
    ):
        if not 0 < min_interval <= initial_interval <= max_interval:
            raise ValueError(
                f"intervals must satisfy 0 < min <= initial <= max, got "
                f"{min_interval}, {initial_interval}, {max_interval}"
            )

        self.min_interval = min_interval
        self.max_interval = max_interval
        self.step = step
        self.name = name

        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._interval = initial_interval
        self._next_tick = clock() + initial_interval
        self._waiting = False

    @classmethod
    def from_settings(cls, name: str = "") -> "AdaptiveRateGovernor":
        """Build a governor from the configured intervals"""
        settings = get_settings()
        return cls(
            initial_interval=settings.sync_initial_interval_ms / 1000,
            min_interval=settings.sync_min_interval_ms / 1000,
            max_interval=settings.sync_max_interval_ms / 1000,
            step=settings.sync_interval_step_ms / 1000,
            name=name,
        )

    @property
    def interval(self) -> float:
        """Current tick interval in seconds"""
        with self._lock:
            return self._interval

    async def wait(self) -> None:
        """Suspend until the next tick"""
        if self._waiting:
            raise RuntimeError(f"rate governor {self.name!r} already has a waiting caller")

        self._waiting = True
        try:
            while True:
                with self._lock:
                    now = self._clock()
                    delay = self._next_tick - now
                    if delay <= 0:
                        # Consume the tick; missed ticks are dropped, not queued
                        self._next_tick += self._interval
                        if self._next_tick <= now:
                            self._next_tick = now + self._interval
                        return
                # adjust() may move the tick while we sleep, so re-check after waking
                await self._sleep(delay)
        finally:
            self._waiting = False

    def adjust(self, was_throttled: bool) -> None:
        """
        Retune the interval after a request

        Args:
            was_throttled: True to slow down (double), False to speed up (one step)
        """
        with self._lock:
            previous = self._interval
            if was_throttled:
                self._interval = min(self._interval * 2, self.max_interval)
            else:
                self._interval = max(self._interval - self.step, self.min_interval)
            # Reset the timer so the next tick is a full new interval away
            self._next_tick = self._clock() + self._interval
            current = self._interval

        if was_throttled and current != previous:
            log.debug(f"Rate governor {self.name}: slowing down {previous * 1000:.0f}ms -> {current * 1000:.0f}ms")

    def snapshot(self) -> dict:
        """Current state for logs"""
        with self._lock:
            return {
                "interval_ms": round(self._interval * 1000),
                "min_interval_ms": round(self.min_interval * 1000),
                "max_interval_ms": round(self.max_interval * 1000),
            }
