"""Consumer-facing engine: one owned instance per repository context.

The engine wires a :class:`Dispatcher`, :class:`ResultCache`,
:class:`NotificationChannel`, one :class:`JobSlot` per local kind and the
:class:`RemoteOpController` for fetch/push/pull around a single backend.

Callers (render loops, the CLI) never block: ``spawn`` returns a generation,
results arrive later as notifications and are read back with
``last_result``/``cached``.

Invalidation is lazy. ``invalidate`` and debounced filesystem events only
mark cache entries stale and push BackendStateChanged; the caller decides
when to re-spawn. Every mutating job (stage/unstage/commit and the remote
kinds) invalidates the whole cache once it has run, whether it succeeded or
not.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from asyncrepo.application.ports.backend import Backend
from asyncrepo.application.settings import EngineSettings
from asyncrepo.application.watch import ChangeDebouncer
from asyncrepo.core.cache import CacheKey, ResultCache
from asyncrepo.core.events import BackendStateChanged, Notification, NotificationChannel
from asyncrepo.core.jobs import Dispatcher, JobRequest, JobResult, JobSlot, SlotStats
from asyncrepo.core.kinds import JobKind
from asyncrepo.core.remote.controller import RemoteOpController, RemoteRequest
from asyncrepo.core.remote.credentials import CredentialConfig
from asyncrepo.core.remote.state import OperationHandle, RemoteOpSnapshot, RemoteTarget

logger = logging.getLogger(__name__)

_ALL_PARAMS = object()


class RepoEngine:
    def __init__(
        self,
        backend: Backend,
        *,
        settings: EngineSettings | None = None,
        channel: NotificationChannel | None = None,
        cache: ResultCache | None = None,
        dispatcher: Dispatcher | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or EngineSettings()
        self._backend = backend
        self._channel = channel or NotificationChannel()
        self._cache = cache or ResultCache(
            max_entries_per_kind=self._settings.cache_max_entries_per_kind
        )
        self._dispatcher = dispatcher or Dispatcher(
            read_workers=self._settings.read_workers,
            read_queue_size=self._settings.read_queue_size,
            write_queue_size=self._settings.write_queue_size,
        )
        self._slots: dict[JobKind, JobSlot[Any]] = {
            kind: JobSlot(
                kind,
                dispatcher=self._dispatcher,
                channel=self._channel,
                cache=self._cache,
                run=self._make_runner(kind),
            )
            for kind in JobKind
            if not kind.is_remote
        }
        self._remote = RemoteOpController(
            dispatcher=self._dispatcher,
            channel=self._channel,
            cache=self._cache,
            execute=self._execute_remote,
            progress_max_rate_hz=self._settings.progress_max_rate_hz,
            clock=clock,
        )
        self._debouncer = ChangeDebouncer(self._on_fs_changes, window_ms=self._settings.debounce_ms)
        self._closed = False

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def cache(self) -> ResultCache:
        return self._cache

    @property
    def channel(self) -> NotificationChannel:
        return self._channel

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    # ---- jobs ---------------------------------------------------------

    def slot(self, kind: JobKind) -> JobSlot[Any]:
        if kind.is_remote:
            return self._remote.slot(kind)
        return self._slots[kind]

    def spawn(self, kind: JobKind, params: Any = None) -> int:
        """Dispatch *kind* and return its generation. Raises QueueFull synchronously."""
        if kind.is_remote:
            raise ValueError(f"{kind.value} is a remote operation; use start_remote_op()")
        return self._slots[kind].spawn(params).generation

    def last_result(self, kind: JobKind) -> tuple[Any, int] | None:
        return self.slot(kind).last_result()

    def last_outcome(self, kind: JobKind) -> JobResult[Any] | None:
        return self.slot(kind).result()

    def cached(self, kind: JobKind, params: Any = None) -> Any | None:
        """Payload for (kind, params) if it is still valid, else None."""
        return self._cache.get(CacheKey.for_request(kind, params))

    def is_pending(self, kind: JobKind) -> bool:
        return self.slot(kind).is_pending()

    def slot_stats(self, kind: JobKind) -> SlotStats:
        return self.slot(kind).stats()

    # ---- notifications ------------------------------------------------

    def try_recv_notification(self) -> Notification | None:
        return self._channel.try_recv()

    def recv_notification(self, timeout: float | None = None) -> Notification | None:
        return self._channel.recv(timeout)

    def drain_notifications(self) -> list[Notification]:
        return self._channel.drain()

    # ---- invalidation -------------------------------------------------

    def invalidate(self, kind: JobKind | None = None, params: Any = _ALL_PARAMS) -> None:
        """Mark cached payloads stale and push BackendStateChanged.

        No kind: everything. A kind alone: every key of that kind. A kind with
        params: that one key.
        """
        if kind is None:
            self._cache.invalidate_all()
        elif params is _ALL_PARAMS:
            self._cache.invalidate_kind(kind)
        else:
            self._cache.invalidate(CacheKey.for_request(kind, params))
        self._channel.push(BackendStateChanged(kind=kind))

    def notify_fs_event(self, path: str | Path | None = None) -> None:
        """Entry point for the filesystem-watch collaborator; debounced."""
        self._debouncer.on_event(path)

    def flush_fs_events(self) -> bool:
        return self._debouncer.flush()

    def _on_fs_changes(self, paths: frozenset[Path]) -> None:
        logger.debug("Working tree changed (%d paths); invalidating", len(paths))
        self.invalidate()

    # ---- remote -------------------------------------------------------

    def start_remote_op(
        self,
        kind: JobKind,
        target: RemoteTarget | None = None,
        credential_config: CredentialConfig | None = None,
    ) -> OperationHandle:
        return self._remote.start(kind, target, credential_config)

    def cancel(self, handle: OperationHandle) -> bool:
        return self._remote.cancel(handle)

    def state(self, handle: OperationHandle) -> RemoteOpSnapshot:
        return self._remote.state(handle)

    def active_remote_ops(self) -> list[OperationHandle]:
        return self._remote.active()

    # ---- lifecycle ----------------------------------------------------

    def shutdown(self, *, wait: bool = True, timeout: float | None = None) -> None:
        if self._closed:
            return
        self._closed = True
        self._debouncer.close()
        self._dispatcher.shutdown(wait=wait, cancel_pending=True, timeout=timeout)
        self._remote.cancel_unstarted()
        self._channel.close()
        logger.debug("Engine shut down")

    def __enter__(self) -> RepoEngine:
        return self

    def __exit__(self, *_exc: object) -> None:
        self.shutdown()

    # ---- worker side --------------------------------------------------

    def _make_runner(self, kind: JobKind) -> Callable[[JobRequest], Any]:
        if not kind.is_mutating:
            return lambda req: self._backend.execute(kind, req.params)

        def _run_mutation(req: JobRequest) -> Any:
            try:
                return self._backend.execute(kind, req.params)
            finally:
                self._after_mutation(kind)

        return _run_mutation

    def _execute_remote(self, kind: JobKind, request: RemoteRequest) -> Any:
        try:
            return self._backend.execute(kind, request)
        finally:
            self._after_mutation(kind)

    def _after_mutation(self, kind: JobKind) -> None:
        # Runs on the write-lane worker, before the job's own outcome is delivered.
        self._cache.invalidate_all()
        self._channel.push(BackendStateChanged(kind=None, cause=kind))
