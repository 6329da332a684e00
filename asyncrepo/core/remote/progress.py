from __future__ import annotations

import time
from collections.abc import Callable
from threading import Lock

from asyncrepo.config import DEFAULT_PROGRESS_MAX_RATE_HZ

# Clock readings are floats; 100.1 - 100.0 < 0.1.
_EPSILON_S = 1e-9


class ProgressThrottle:
    """Rate limiter for transfer progress notifications.

    ``should_emit`` returns True at most ``max_rate_hz`` times per second;
    ``force=True`` bypasses the limit (phase changes, final counters).
    """

    def __init__(
        self,
        max_rate_hz: float = DEFAULT_PROGRESS_MAX_RATE_HZ,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._min_interval = 0.0 if max_rate_hz <= 0 else 1.0 / float(max_rate_hz)
        self._clock = clock
        self._last_ts: float | None = None
        self._lock = Lock()

    @property
    def min_interval(self) -> float:
        return self._min_interval

    def should_emit(self, *, force: bool = False) -> bool:
        now = self._clock()
        with self._lock:
            if (
                force
                or self._last_ts is None
                or (now - self._last_ts) + _EPSILON_S >= self._min_interval
            ):
                self._last_ts = now
                return True
            return False
