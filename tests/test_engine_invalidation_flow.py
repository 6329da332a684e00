from __future__ import annotations

import threading
import time
from typing import Any

import pytest

from asyncrepo.application.engine import RepoEngine
from asyncrepo.application.ports.backend import DiffParams, StageParams
from asyncrepo.application.settings import EngineSettings
from asyncrepo.core.errors import ConflictError
from asyncrepo.core.events import BackendStateChanged, JobCompleted, JobFailed
from asyncrepo.core.kinds import JobKind
from asyncrepo.core.remote.controller import RemoteRequest
from asyncrepo.core.remote.credentials import CredentialConfig
from asyncrepo.core.remote.state import RemotePhase, RemoteTarget, TransferProgress


def _wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(0.005)
    raise AssertionError("condition not reached in time")


class _FakeBackend:
    def __init__(self) -> None:
        self.calls: list[tuple[JobKind, Any]] = []
        self.gates: dict[JobKind, threading.Event] = {}
        self.errors: dict[JobKind, Exception] = {}
        self.version = 0
        self._lock = threading.Lock()

    def execute(self, kind: JobKind, params: Any) -> Any:
        with self._lock:
            self.calls.append((kind, params))
        gate = self.gates.get(kind)
        if gate is not None:
            gate.wait(timeout=2.0)
        if kind in self.errors:
            raise self.errors[kind]
        if kind.is_mutating:
            self.version += 1
        if isinstance(params, RemoteRequest):
            params.callbacks.progress(TransferProgress(received_objects=1, total_objects=1))
            return f"{kind.value}@{self.version}"
        return f"{kind.value}:{params}@{self.version}"


def _engine(backend: _FakeBackend) -> RepoEngine:
    return RepoEngine(backend, settings=EngineSettings(read_workers=2, debounce_ms=0))


def test_spawn_completes_and_result_is_cached() -> None:
    backend = _FakeBackend()
    with _engine(backend) as engine:
        gen = engine.spawn(JobKind.DIFF, DiffParams("a.txt"))
        _wait_until(lambda: not engine.is_pending(JobKind.DIFF))

        assert engine.try_recv_notification() == JobCompleted(kind=JobKind.DIFF, generation=gen)
        payload, got_gen = engine.last_result(JobKind.DIFF)
        assert got_gen == gen
        assert engine.cached(JobKind.DIFF, DiffParams("a.txt")) == payload
        assert engine.cached(JobKind.DIFF, DiffParams("b.txt")) is None


def test_invalidate_during_flight_leaves_cache_stale() -> None:
    backend = _FakeBackend()
    backend.gates[JobKind.STATUS] = threading.Event()
    with _engine(backend) as engine:
        engine.spawn(JobKind.STATUS)
        engine.invalidate()
        backend.gates[JobKind.STATUS].set()
        _wait_until(lambda: not engine.is_pending(JobKind.STATUS))

        notes = engine.drain_notifications()
        assert notes[0] == BackendStateChanged(kind=None)
        assert isinstance(notes[1], JobCompleted)
        # Delivered to the slot, not trusted from the cache.
        assert engine.last_result(JobKind.STATUS) is not None
        assert engine.cached(JobKind.STATUS) is None


def test_invalidate_single_key_and_kind() -> None:
    backend = _FakeBackend()
    with _engine(backend) as engine:
        engine.spawn(JobKind.DIFF, DiffParams("a"))
        _wait_until(lambda: not engine.is_pending(JobKind.DIFF))
        engine.spawn(JobKind.TAGS)
        _wait_until(lambda: not engine.is_pending(JobKind.TAGS))

        engine.invalidate(JobKind.DIFF, DiffParams("a"))
        assert engine.cached(JobKind.DIFF, DiffParams("a")) is None
        assert engine.cached(JobKind.TAGS) is not None

        engine.invalidate(JobKind.TAGS)
        assert engine.cached(JobKind.TAGS) is None
        changes = [n for n in engine.drain_notifications() if isinstance(n, BackendStateChanged)]
        assert [c.kind for c in changes] == [JobKind.DIFF, JobKind.TAGS]


def test_mutation_invalidates_everything_even_when_it_fails() -> None:
    backend = _FakeBackend()
    with _engine(backend) as engine:
        engine.spawn(JobKind.STATUS)
        _wait_until(lambda: not engine.is_pending(JobKind.STATUS))
        assert engine.cached(JobKind.STATUS) is not None

        backend.errors[JobKind.COMMIT] = ConflictError("nothing to commit")
        engine.spawn(JobKind.COMMIT)
        _wait_until(lambda: not engine.is_pending(JobKind.COMMIT))

        assert engine.cached(JobKind.STATUS) is None
        notes = engine.drain_notifications()
        assert BackendStateChanged(kind=None, cause=JobKind.COMMIT) in notes
        assert isinstance(notes[-1], JobFailed)
        assert "nothing to commit" in notes[-1].error


def test_mutating_kinds_run_one_at_a_time() -> None:
    backend = _FakeBackend()
    running = 0
    peak = 0
    lock = threading.Lock()
    original = backend.execute

    def tracking(kind: JobKind, params: Any) -> Any:
        nonlocal running, peak
        with lock:
            running += 1
            peak = max(peak, running)
        try:
            time.sleep(0.005)
            return original(kind, params)
        finally:
            with lock:
                running -= 1

    backend.execute = tracking  # type: ignore[method-assign]
    with _engine(backend) as engine:
        for i in range(3):
            engine.spawn(JobKind.STAGE, StageParams((f"f{i}",)))
            engine.spawn(JobKind.UNSTAGE, StageParams((f"f{i}",)))
        _wait_until(
            lambda: not engine.is_pending(JobKind.STAGE) and not engine.is_pending(JobKind.UNSTAGE)
        )
    assert peak == 1


def test_remote_kinds_go_through_start_remote_op() -> None:
    backend = _FakeBackend()
    with _engine(backend) as engine:
        with pytest.raises(ValueError):
            engine.spawn(JobKind.FETCH)

        handle = engine.start_remote_op(
            JobKind.FETCH, RemoteTarget(remote="origin"), CredentialConfig()
        )
        _wait_until(lambda: not engine.is_pending(JobKind.FETCH))

        assert engine.state(handle).phase is RemotePhase.COMPLETED
        assert engine.last_result(JobKind.FETCH) == ("fetch@1", handle.generation)
        notes = engine.drain_notifications()
        assert BackendStateChanged(kind=None, cause=JobKind.FETCH) in notes


def test_fs_events_are_debounced_into_invalidation() -> None:
    backend = _FakeBackend()
    engine = RepoEngine(backend, settings=EngineSettings(debounce_ms=10_000))
    try:
        engine.spawn(JobKind.BRANCHES)
        _wait_until(lambda: not engine.is_pending(JobKind.BRANCHES))
        engine.drain_notifications()

        for p in ("a", "b", "c"):
            engine.notify_fs_event(p)
        assert engine.cached(JobKind.BRANCHES) is not None
        assert engine.flush_fs_events()

        assert engine.cached(JobKind.BRANCHES) is None
        assert engine.drain_notifications() == [BackendStateChanged(kind=None)]
    finally:
        engine.shutdown()


def test_shutdown_cancels_remote_ops_still_queued() -> None:
    backend = _FakeBackend()
    backend.gates[JobKind.FETCH] = threading.Event()
    engine = _engine(backend)
    try:
        running = engine.start_remote_op(JobKind.FETCH, RemoteTarget(), CredentialConfig())
        _wait_until(lambda: backend.calls)
        queued = engine.start_remote_op(JobKind.FETCH, RemoteTarget(), CredentialConfig())

        engine.shutdown(wait=False)

        snap = engine.state(queued)
        assert snap.phase is RemotePhase.CANCELLED
        assert snap.cancel_requested
        assert engine.state(running).phase is RemotePhase.CONNECTING
    finally:
        backend.gates[JobKind.FETCH].set()
    assert [kind for kind, _ in backend.calls] == [JobKind.FETCH]
