"""Bounded worker-thread pool for backend calls.

Work is split into two lanes by :class:`ResourceClass`:

- READ: ``read_workers`` threads, for queries that open their own short-lived
  backend handle;
- WRITE: exactly one thread, so mutating jobs (index writes, commits, remote
  transfers) are serialized against the backend.

Each lane has its own bounded queue. ``submit`` never blocks: a full queue is
reported synchronously with :class:`QueueFull` and the caller decides whether
to drop, retry or wait.
"""

from __future__ import annotations

import logging
import queue
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock, Thread
from typing import Any, Generic, TypeVar

from asyncrepo.config import (
    DEFAULT_READ_QUEUE_SIZE,
    DEFAULT_READ_WORKERS,
    DEFAULT_WRITE_QUEUE_SIZE,
)
from asyncrepo.core.errors import CancelledError, QueueFull
from asyncrepo.core.kinds import ResourceClass
from asyncrepo.core.observability.timing import time_block

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class JobOutcome(Generic[T]):
    payload: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, payload: T) -> JobOutcome[T]:
        return cls(payload=payload)

    @classmethod
    def failure(cls, error: Exception) -> JobOutcome[T]:
        return cls(error=error)


@dataclass(frozen=True, slots=True)
class WorkItem:
    """A closure to run on a worker plus where to send its outcome."""

    name: str
    resource: ResourceClass
    run: Callable[[], Any]
    deliver: Callable[[JobOutcome[Any]], None]


_STOP = None


class _Lane:
    def __init__(self, resource: ResourceClass, workers: int, queue_size: int) -> None:
        self.resource = resource
        self._q: queue.Queue[WorkItem | None] = queue.Queue(maxsize=max(1, int(queue_size)))
        self._lock = Lock()
        self._active = 0
        self._closed = False
        self._threads = [
            Thread(target=self._worker_loop, name=f"job-{resource.value}-{i}", daemon=True)
            for i in range(max(1, int(workers)))
        ]
        for t in self._threads:
            t.start()

    @property
    def workers(self) -> int:
        return len(self._threads)

    @property
    def active(self) -> int:
        with self._lock:
            return self._active

    def pending(self) -> int:
        return self._q.qsize()

    def offer(self, item: WorkItem) -> None:
        if self._closed:
            raise RuntimeError("cannot submit work after dispatcher shutdown")
        try:
            self._q.put_nowait(item)
        except queue.Full:
            raise QueueFull(
                f"{self.resource.value} queue full ({self._q.maxsize} pending), rejected {item.name}"
            ) from None

    def _worker_loop(self) -> None:
        while True:
            item = self._q.get()
            try:
                if item is _STOP:
                    return
                self._execute(item)
            finally:
                self._q.task_done()

    def _execute(self, item: WorkItem) -> None:
        with self._lock:
            self._active += 1
        try:
            outcome = _run_guarded(item)
        finally:
            with self._lock:
                self._active -= 1
        try:
            item.deliver(outcome)
        except Exception:
            # Delivery bugs must not kill the worker.
            logger.exception("Outcome delivery failed for %s", item.name)

    def close(self, *, cancel_pending: bool) -> list[WorkItem]:
        self._closed = True
        dropped: list[WorkItem] = []
        if cancel_pending:
            while True:
                try:
                    item = self._q.get_nowait()
                except queue.Empty:
                    break
                self._q.task_done()
                if item is not _STOP:
                    dropped.append(item)
        return dropped

    def stop(self, *, wait: bool, timeout: float | None) -> None:
        for _ in self._threads:
            if wait:
                self._q.put(_STOP)
            else:
                try:
                    self._q.put_nowait(_STOP)
                except queue.Full:
                    break
        if wait:
            for t in self._threads:
                t.join(timeout=timeout)


def _run_guarded(item: WorkItem) -> JobOutcome[Any]:
    try:
        with time_block(item.name, logger=logger):
            return JobOutcome.success(item.run())
    except Exception as e:  # noqa: BLE001
        logger.debug("Job %s failed: %s", item.name, e, exc_info=True)
        return JobOutcome.failure(e)


class Dispatcher:
    """Fixed pool of worker threads fed by per-resource bounded queues."""

    def __init__(
        self,
        *,
        read_workers: int = DEFAULT_READ_WORKERS,
        read_queue_size: int = DEFAULT_READ_QUEUE_SIZE,
        write_queue_size: int = DEFAULT_WRITE_QUEUE_SIZE,
    ) -> None:
        self._lanes: dict[ResourceClass, _Lane] = {
            ResourceClass.READ: _Lane(ResourceClass.READ, read_workers, read_queue_size),
            # Mutations are serialized: one worker, never more.
            ResourceClass.WRITE: _Lane(ResourceClass.WRITE, 1, write_queue_size),
        }
        self._shutdown = False
        logger.debug(
            "Dispatcher started: %d read workers, 1 write worker",
            self._lanes[ResourceClass.READ].workers,
        )

    def submit(self, item: WorkItem) -> None:
        """Enqueue *item* on its lane; raises QueueFull without blocking."""
        self._lanes[item.resource].offer(item)

    def pending(self, resource: ResourceClass) -> int:
        return self._lanes[resource].pending()

    def active(self, resource: ResourceClass) -> int:
        return self._lanes[resource].active

    def workers(self, resource: ResourceClass) -> int:
        return self._lanes[resource].workers

    def shutdown(
        self, *, wait: bool = True, cancel_pending: bool = False, timeout: float | None = None
    ) -> None:
        """Stop accepting work and stop the workers.

        With ``cancel_pending`` queued items are not run; their owners receive a
        CancelledError outcome on the calling thread.
        """
        if self._shutdown:
            return
        self._shutdown = True
        dropped: list[WorkItem] = []
        for lane in self._lanes.values():
            dropped.extend(lane.close(cancel_pending=cancel_pending))
        for item in dropped:
            try:
                item.deliver(JobOutcome.failure(CancelledError("dispatcher shut down")))
            except Exception:
                logger.exception("Outcome delivery failed for %s", item.name)
        for lane in self._lanes.values():
            lane.stop(wait=wait, timeout=timeout)

    def __enter__(self) -> Dispatcher:
        return self

    def __exit__(self, *_exc: object) -> None:
        self.shutdown(wait=True)
