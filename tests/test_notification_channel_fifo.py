from __future__ import annotations

import threading

from asyncrepo.core.events import BackendStateChanged, JobCompleted, NotificationChannel
from asyncrepo.core.kinds import JobKind


def test_try_recv_is_non_blocking_and_fifo() -> None:
    ch = NotificationChannel()
    assert ch.try_recv() is None

    ch.push(JobCompleted(kind=JobKind.STATUS, generation=1))
    ch.push(JobCompleted(kind=JobKind.STATUS, generation=2))
    ch.push(BackendStateChanged())

    assert ch.try_recv() == JobCompleted(kind=JobKind.STATUS, generation=1)
    assert ch.try_recv() == JobCompleted(kind=JobKind.STATUS, generation=2)
    assert ch.try_recv() == BackendStateChanged()
    assert ch.try_recv() is None


def test_many_producers_keep_per_producer_order() -> None:
    ch = NotificationChannel()
    kinds = [JobKind.STATUS, JobKind.LOG, JobKind.TAGS, JobKind.BRANCHES]
    start = threading.Event()

    def produce(kind: JobKind) -> None:
        start.wait(timeout=2.0)
        for gen in range(1, 201):
            ch.push(JobCompleted(kind=kind, generation=gen))

    threads = [threading.Thread(target=produce, args=(k,)) for k in kinds]
    for t in threads:
        t.start()
    start.set()
    for t in threads:
        t.join(timeout=5.0)

    received = ch.drain()
    assert len(received) == 800
    for kind in kinds:
        gens = [n.generation for n in received if n.kind is kind]
        assert gens == list(range(1, 201))


def test_recv_times_out_and_closed_channel_drops() -> None:
    ch = NotificationChannel()
    assert ch.recv(timeout=0.01) is None

    ch.close()
    ch.push(BackendStateChanged())
    assert ch.pending() == 0
