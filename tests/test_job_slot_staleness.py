from __future__ import annotations

import logging
import threading
import time

import pytest

from asyncrepo.core.cache import CacheKey, ResultCache
from asyncrepo.core.errors import QueueFull
from asyncrepo.core.events import JobCompleted, JobFailed, NotificationChannel
from asyncrepo.core.jobs import Dispatcher, JobRequest, JobSlot
from asyncrepo.core.kinds import JobKind


def _wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(0.005)
    raise AssertionError("condition not reached in time")


class _GatedRun:
    """Backend stand-in: each generation blocks until its gate is released."""

    def __init__(self) -> None:
        self.gates: dict[int, threading.Event] = {}
        self.started: dict[int, threading.Event] = {}
        self.fail: set[int] = set()

    def gate(self, generation: int) -> threading.Event:
        return self.gates.setdefault(generation, threading.Event())

    def running(self, generation: int) -> threading.Event:
        return self.started.setdefault(generation, threading.Event())

    def __call__(self, req: JobRequest) -> str:
        self.running(req.generation).set()
        self.gate(req.generation).wait(timeout=2.0)
        if req.generation in self.fail:
            raise RuntimeError(f"gen {req.generation} failed")
        return f"payload-{req.params}"


def _make(run, *, read_workers: int = 2, read_queue_size: int = 8):
    dispatcher = Dispatcher(read_workers=read_workers, read_queue_size=read_queue_size)
    channel = NotificationChannel()
    cache = ResultCache()
    slot = JobSlot(JobKind.STATUS, dispatcher=dispatcher, channel=channel, cache=cache, run=run)
    return slot, dispatcher, channel, cache


def test_superseded_result_arriving_last_is_discarded() -> None:
    run = _GatedRun()
    slot, dispatcher, channel, cache = _make(run)

    assert slot.spawn("p1").generation == 1
    assert slot.spawn("p2").generation == 2

    run.gate(2).set()
    _wait_until(lambda: slot.last_result() is not None)
    run.gate(1).set()
    _wait_until(lambda: not slot.is_pending())
    dispatcher.shutdown()

    assert slot.last_result() == ("payload-p2", 2)
    assert channel.drain() == [JobCompleted(kind=JobKind.STATUS, generation=2)]
    assert cache.get(CacheKey.for_request(JobKind.STATUS, "p1")) is None
    assert slot.stats().stale == 1


def test_superseded_result_arriving_first_is_discarded() -> None:
    run = _GatedRun()
    slot, dispatcher, channel, _cache = _make(run)

    slot.spawn("p1")
    slot.spawn("p2")
    run.gate(1).set()
    _wait_until(lambda: slot.stats().stale == 1)
    assert slot.last_result() is None

    run.gate(2).set()
    _wait_until(lambda: not slot.is_pending())
    dispatcher.shutdown()

    assert slot.last_result() == ("payload-p2", 2)
    assert [n.generation for n in channel.drain()] == [2]


def test_failure_is_reported_and_slot_accepts_new_spawn() -> None:
    run = _GatedRun()
    run.fail.add(1)
    run.gate(1).set()
    run.gate(2).set()
    slot, dispatcher, channel, _cache = _make(run)

    slot.spawn("p1")
    _wait_until(lambda: not slot.is_pending())
    first = channel.try_recv()
    assert isinstance(first, JobFailed)
    assert "gen 1 failed" in first.error
    assert slot.last_result() is None
    assert slot.last_error() is not None

    slot.spawn("p2")
    _wait_until(lambda: not slot.is_pending())
    dispatcher.shutdown()

    assert channel.try_recv() == JobCompleted(kind=JobKind.STATUS, generation=2)
    result = slot.result()
    assert result is not None and result.ok and result.generation == 2


def test_generations_are_delivered_in_increasing_order() -> None:
    run = _GatedRun()
    slot, dispatcher, channel, _cache = _make(run, read_workers=4)

    for i in range(1, 6):
        slot.spawn(f"p{i}")
    # Release out of order; only increasing generations may surface.
    for g in (3, 1, 5, 2, 4):
        run.gate(g).set()
        time.sleep(0.01)
    _wait_until(lambda: not slot.is_pending())
    dispatcher.shutdown()

    history = slot.stats().history
    assert history == sorted(history)
    assert slot.last_result() == ("payload-p5", 5)


def test_rejected_spawn_does_not_stale_the_job_in_flight() -> None:
    run = _GatedRun()
    dispatcher = Dispatcher(read_workers=1, read_queue_size=1)
    channel = NotificationChannel()
    cache = ResultCache()
    status = JobSlot(JobKind.STATUS, dispatcher=dispatcher, channel=channel, cache=cache, run=run)
    tags = JobSlot(JobKind.TAGS, dispatcher=dispatcher, channel=channel, cache=cache, run=lambda req: "tags")

    status.spawn("p1")
    assert run.running(1).wait(timeout=2.0)
    tags.spawn()  # fills the single queue slot

    with pytest.raises(QueueFull):
        status.spawn("p2")
    assert status.generation == 2

    run.gate(1).set()
    _wait_until(lambda: not status.is_pending() and not tags.is_pending())
    dispatcher.shutdown()

    assert status.last_result() == ("payload-p1", 1)
    assert status.stats().rejected == 1
    assert status.stats().stale == 0


def test_stale_discard_is_logged_with_both_generations(caplog: pytest.LogCaptureFixture) -> None:
    run = _GatedRun()
    slot, dispatcher, _channel, _cache = _make(run)

    with caplog.at_level(logging.DEBUG, logger="asyncrepo.core.jobs.job_slot"):
        slot.spawn("p1")
        slot.spawn("p2")
        run.gate(1).set()
        run.gate(2).set()
        _wait_until(lambda: not slot.is_pending())
        dispatcher.shutdown()

    assert "Discarding stale status gen 1 (current 2)" in caplog.messages
