"""Process-wide cooldown shared by every generation request."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable


class RateLimitWindow:
    """A single "do not call before" deadline on a monotonic clock.

    Any request that observes a provider rate limit extends the deadline;
    every request consults it before calling the provider. The deadline only
    moves forward, so a stale observation never shortens an active cooldown.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._deadline = 0.0
        self._lock = threading.Lock()

    @property
    def deadline(self) -> float:
        with self._lock:
            return self._deadline

    def extend(self, delay_seconds: float) -> float:
        """Push the deadline to at least now + `delay_seconds`; return the deadline."""

        candidate = self._clock() + max(0.0, delay_seconds)
        with self._lock:
            if candidate > self._deadline:
                self._deadline = candidate
            return self._deadline

    def remaining(self) -> float:
        with self._lock:
            deadline = self._deadline
        return max(0.0, deadline - self._clock())

    def is_active(self) -> bool:
        return self.remaining() > 0.0
