from __future__ import annotations

import logging
import queue

from asyncrepo.core.events.notifications import Notification

logger = logging.getLogger(__name__)


class NotificationChannel:
    """Multi-producer, single-consumer notification queue.

    - ``push`` never blocks: the queue is unbounded so a slow or absent consumer
      cannot stall worker threads.
    - ``try_recv`` is a non-blocking poll; the render loop is expected to drain
      fully once per tick.
    - Arrival order is preserved; there is no cross-kind ordering beyond that.

    Losing freshness here never corrupts engine state: consumers can always
    re-read ``last_result``.
    """

    def __init__(self) -> None:
        self._q: queue.SimpleQueue[Notification] = queue.SimpleQueue()
        self._closed = False

    def push(self, notification: Notification) -> None:
        if self._closed:
            logger.debug("Dropping notification on closed channel: %r", notification)
            return
        self._q.put_nowait(notification)

    def try_recv(self) -> Notification | None:
        try:
            return self._q.get_nowait()
        except queue.Empty:
            return None

    def recv(self, timeout: float | None = None) -> Notification | None:
        """Blocking receive for headless consumers; returns None on timeout."""
        try:
            return self._q.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[Notification]:
        out: list[Notification] = []
        while True:
            item = self.try_recv()
            if item is None:
                return out
            out.append(item)

    def pending(self) -> int:
        """Approximate number of queued notifications."""
        return self._q.qsize()

    def close(self) -> None:
        self._closed = True
