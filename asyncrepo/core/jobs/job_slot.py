"""Per-kind job slot with generation-based staleness discarding.

A slot owns one operation kind. Every ``spawn`` bumps the slot's generation
before dispatch; when a job finishes on a worker its generation is compared
with the newest *dispatched* generation and older results are dropped without
touching the cache or the notification channel. Backend calls are not
preemptible, so superseded jobs still run to completion; only their results
are discarded.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Generic, TypeVar

from asyncrepo.core.cache import CacheKey, ResultCache, ValidityToken
from asyncrepo.core.errors import QueueFull, StaleResult
from asyncrepo.core.events import JobCompleted, JobFailed, NotificationChannel
from asyncrepo.core.jobs.dispatcher import Dispatcher, JobOutcome, WorkItem
from asyncrepo.core.kinds import JobKind

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class JobRequest:
    kind: JobKind
    params: Any
    generation: int
    key: CacheKey
    token: ValidityToken


@dataclass(frozen=True, slots=True)
class JobResult(Generic[T]):
    kind: JobKind
    generation: int
    payload: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class SlotStats:
    spawned: int = 0
    rejected: int = 0
    completed: int = 0
    failed: int = 0
    stale: int = 0
    in_flight: int = 0
    history: list[int] = field(default_factory=list)


class JobSlot(Generic[T]):
    """Holds the in-flight/latest-result state of one job kind.

    ``run`` is the blocking call executed on a worker; it receives the
    immutable :class:`JobRequest` and returns the payload or raises.
    """

    def __init__(
        self,
        kind: JobKind,
        *,
        dispatcher: Dispatcher,
        channel: NotificationChannel,
        cache: ResultCache,
        run: Callable[[JobRequest], T],
    ) -> None:
        self._kind = kind
        self._dispatcher = dispatcher
        self._channel = channel
        self._cache = cache
        self._run = run
        self._lock = Lock()
        self._generation = 0
        self._dispatched = 0
        self._last: tuple[T, int] | None = None
        self._last_error: tuple[Exception, int] | None = None
        self._stats = SlotStats()

    @property
    def kind(self) -> JobKind:
        return self._kind

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def spawn(self, params: Any = None) -> JobRequest:
        """Dispatch a new job; returns immediately.

        Raises QueueFull if the dispatcher rejects the job. The generation
        stays bumped in that case but does not supersede jobs already in flight.
        """
        key = CacheKey.for_request(self._kind, params)
        with self._lock:
            self._generation += 1
            req = JobRequest(
                kind=self._kind,
                params=params,
                generation=self._generation,
                key=key,
                token=self._cache.token(key),
            )
            self._stats.spawned += 1
            item = WorkItem(
                name=f"{self._kind.value}#{req.generation}",
                resource=self._kind.resource_class,
                run=lambda: self._run(req),
                deliver=lambda outcome: self._on_complete(req, outcome),
            )
            try:
                self._dispatcher.submit(item)
            except QueueFull:
                self._stats.rejected += 1
                logger.warning("%s gen %d rejected: queue full", self._kind.value, req.generation)
                raise
            self._dispatched = req.generation
            self._stats.in_flight += 1
        logger.debug("Spawned %s gen %d", self._kind.value, req.generation)
        return req

    def is_stale(self, generation: int) -> bool:
        with self._lock:
            return generation < self._dispatched

    def _check_current_locked(self, generation: int) -> None:
        if generation < self._dispatched:
            raise StaleResult(
                f"stale {self._kind.value} gen {generation} (current {self._dispatched})"
            )

    def _on_complete(self, req: JobRequest, outcome: JobOutcome[Any]) -> None:
        # Runs on a worker thread.
        with self._lock:
            self._stats.in_flight -= 1
            try:
                self._check_current_locked(req.generation)
            except StaleResult as e:
                self._stats.stale += 1
                logger.debug("Discarding %s", e)
                return
            self._stats.history.append(req.generation)
            if outcome.ok:
                self._last = (outcome.payload, req.generation)
                self._stats.completed += 1
                self._cache.put(req.key, outcome.payload, token=req.token, generation=req.generation)
                self._channel.push(JobCompleted(kind=self._kind, generation=req.generation))
            else:
                err = outcome.error
                assert err is not None
                self._last_error = (err, req.generation)
                self._stats.failed += 1
                logger.info("%s gen %d failed: %s", self._kind.value, req.generation, err)
                self._channel.push(JobFailed(kind=self._kind, generation=req.generation, error=str(err)))

    def last_result(self) -> tuple[T, int] | None:
        """Most recent non-stale successful payload and its generation."""
        with self._lock:
            return self._last

    def last_error(self) -> tuple[Exception, int] | None:
        with self._lock:
            return self._last_error

    def is_pending(self) -> bool:
        with self._lock:
            return self._stats.in_flight > 0

    def result(self) -> JobResult[T] | None:
        """Latest delivered outcome (success or failure) as a :class:`JobResult`."""
        with self._lock:
            last_gen = self._last[1] if self._last else 0
            err_gen = self._last_error[1] if self._last_error else 0
            if self._last is None and self._last_error is None:
                return None
            if err_gen > last_gen and self._last_error is not None:
                return JobResult(kind=self._kind, generation=err_gen, error=self._last_error[0])
            assert self._last is not None
            return JobResult(kind=self._kind, generation=last_gen, payload=self._last[0])

    def stats(self) -> SlotStats:
        with self._lock:
            return SlotStats(
                spawned=self._stats.spawned,
                rejected=self._stats.rejected,
                completed=self._stats.completed,
                failed=self._stats.failed,
                stale=self._stats.stale,
                in_flight=self._stats.in_flight,
                history=list(self._stats.history),
            )
