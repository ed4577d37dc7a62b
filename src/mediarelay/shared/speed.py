"""Transfer speed estimators used for progress events."""

from __future__ import annotations

import time
from collections import deque
from typing import Callable


class SlidingWindowMeter:
    """Average byte rate over the last ``window`` seconds."""

    def __init__(self, window: float = 5.0, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._window = window
        self._clock = clock
        self._samples: deque[tuple[float, int]] = deque()

    def update(self, total_bytes: int) -> None:
        now = self._clock()
        self._samples.append((now, total_bytes))
        # Keep one sample older than the window as the rate baseline.
        while len(self._samples) > 2 and now - self._samples[1][0] >= self._window:
            self._samples.popleft()

    @property
    def speed(self) -> float:
        if len(self._samples) < 2:
            return 0.0
        (t0, b0), (t1, b1) = self._samples[0], self._samples[-1]
        elapsed = t1 - t0
        if elapsed <= 0:
            return 0.0
        return (b1 - b0) / elapsed

    def eta(self, remaining: int) -> float:
        """Seconds left for ``remaining`` bytes, ``-1`` when unknown."""
        speed = self.speed
        if speed <= 0:
            return -1.0
        return max(remaining, 0) / speed


class EmaSpeedMeter:
    """Exponential moving average over fixed-interval rate samples."""

    def __init__(
        self,
        *,
        alpha: float = 0.3,
        interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not 0 < alpha <= 1:
            raise ValueError(f"alpha must be in (0, 1], got {alpha}")
        self._alpha = alpha
        self._interval = interval
        self._clock = clock
        self._last_time = clock()
        self._last_bytes = 0
        self._ema: float | None = None

    def update(self, total_bytes: int) -> bool:
        """Feed the running byte count. Returns True when a new sample was taken."""
        now = self._clock()
        elapsed = now - self._last_time
        if elapsed < self._interval:
            return False

        instant = (total_bytes - self._last_bytes) / elapsed
        if self._ema is None:
            self._ema = instant
        else:
            self._ema = self._alpha * instant + (1 - self._alpha) * self._ema
        self._last_time = now
        self._last_bytes = total_bytes
        return True

    @property
    def speed(self) -> float:
        return self._ema or 0.0

    def eta(self, remaining: int) -> float:
        speed = self.speed
        if speed <= 0:
            return -1.0
        return max(remaining, 0) / speed
