"""Debounce raw filesystem-change events into one invalidation per window.

Whatever watches the working tree (inotify, polling, an editor hook) calls
:meth:`ChangeDebouncer.on_event` for every raw event. The first event of a
burst arms a one-shot timer; further events in the same window are only
collected. When the timer fires the callback receives every path seen.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from pathlib import Path

from asyncrepo.config import DEFAULT_DEBOUNCE_MS

logger = logging.getLogger(__name__)

TimerFactory = Callable[[float, Callable[[], None]], threading.Timer]


class ChangeDebouncer:
    def __init__(
        self,
        on_flush: Callable[[frozenset[Path]], None],
        *,
        window_ms: int = DEFAULT_DEBOUNCE_MS,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self._on_flush = on_flush
        self._window_s = max(0, window_ms) / 1000.0
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._paths: set[Path] = set()
        self._events = 0
        self._flushes = 0
        self._closed = False

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    @property
    def stats(self) -> tuple[int, int]:
        """(raw events seen, flushes delivered)."""
        with self._lock:
            return self._events, self._flushes

    def on_event(self, path: str | Path | None = None) -> None:
        with self._lock:
            if self._closed:
                return
            self._events += 1
            if path is not None:
                self._paths.add(Path(path))
            if self._timer is not None:
                return
            if self._window_s == 0:
                timer = None
            else:
                timer = self._timer_factory(self._window_s, self._fire)
                timer.daemon = True
                self._timer = timer
        if timer is None:
            self._deliver(None)
        else:
            timer.start()

    def flush(self) -> bool:
        """Deliver a pending burst immediately; False if nothing was pending."""
        with self._lock:
            timer = self._timer
            if timer is None:
                return False
        timer.cancel()
        return self._deliver(timer)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            timer, self._timer = self._timer, None
            self._paths.clear()
        if timer is not None:
            timer.cancel()

    def _fire(self) -> None:
        with self._lock:
            timer = self._timer
        if timer is not None:
            self._deliver(timer)

    def _deliver(self, timer: threading.Timer | None) -> bool:
        with self._lock:
            # One delivery per burst, whichever of flush() and the timer comes first.
            if self._closed or self._timer is not timer:
                return False
            self._timer = None
            paths = frozenset(self._paths)
            self._paths.clear()
            self._flushes += 1
        logger.debug("Change burst flushed (%d paths)", len(paths))
        try:
            self._on_flush(paths)
        except Exception:
            logger.exception("Change callback failed")
        return True
