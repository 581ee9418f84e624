"""Windowed async rate limiter for quota-limited services.

One instance is built per external dependency (PageSpeed quota, politeness
towards the audited site) and injected where it is needed.  The clock and
sleep functions are injectable so tests can run on virtual time.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class RateLimiterState(BaseModel):
    """Read-only view of the limiter's window counters."""

    window_start: Optional[float] = None
    call_count_in_window: int = 0
    last_call_timestamp: Optional[float] = None


class RateLimiter:
    """Admits at most ``max_calls`` per ``window_seconds`` and spaces calls by
    at least ``min_delay_seconds``.

    Admission timestamps inside the current window are kept in a log so the
    quota holds for every sliding window, not only for aligned ones.  Waiters
    are served one at a time, in arrival order.  ``throttle()`` only paces: it
    never raises and never times out on its own.
    """

    def __init__(
        self,
        max_calls: int,
        window_seconds: float,
        min_delay_seconds: float = 0.0,
        *,
        name: str = "rate-limiter",
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if max_calls < 1:
            raise ValueError("max_calls must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self.min_delay_seconds = max(0.0, min_delay_seconds)
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._admitted: deque[float] = deque()
        self._last_call: Optional[float] = None
        self._lock = asyncio.Lock()

    @classmethod
    def per_second(cls, rate: float, **kwargs) -> "RateLimiter":
        """Limiter admitting ``rate`` calls per second, evenly spaced."""
        rate = max(0.1, rate)
        return cls(
            max_calls=max(1, int(rate)),
            window_seconds=1.0 if rate >= 1 else 1.0 / rate,
            min_delay_seconds=1.0 / rate,
            **kwargs,
        )

    async def throttle(self) -> None:
        """Suspend until one more call may be made, then record it."""
        async with self._lock:
            now = self._expire(self._clock())

            if len(self._admitted) >= self.max_calls:
                wait = self._admitted[0] + self.window_seconds - now
                if wait > 0:
                    logger.debug(f"{self.name}: quota reached, waiting {wait:.3f}s")
                    await self._sleep(wait)
                now = self._expire(max(self._clock(), self._admitted[0] + self.window_seconds))

            if self.min_delay_seconds > 0 and self._last_call is not None:
                since_last = now - self._last_call
                if since_last < self.min_delay_seconds:
                    await self._sleep(self.min_delay_seconds - since_last)
                    now = max(self._clock(), self._last_call + self.min_delay_seconds)

            self._admitted.append(now)
            self._last_call = now

    @property
    def state(self) -> RateLimiterState:
        now = self._clock()
        in_window = [t for t in self._admitted if t > now - self.window_seconds]
        return RateLimiterState(
            window_start=in_window[0] if in_window else None,
            call_count_in_window=len(in_window),
            last_call_timestamp=self._last_call,
        )

    def _expire(self, now: float) -> float:
        """Drop admissions that fell out of the window ending at ``now``."""
        cutoff = now - self.window_seconds
        while self._admitted and self._admitted[0] <= cutoff:
            self._admitted.popleft()
        return now
