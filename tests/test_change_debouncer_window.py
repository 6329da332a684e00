from __future__ import annotations

from pathlib import Path

from asyncrepo.application.watch import ChangeDebouncer


class _FakeTimer:
    created: list[_FakeTimer] = []

    def __init__(self, interval: float, function) -> None:
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False
        _FakeTimer.created.append(self)

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.function()


def _debouncer(flushes: list, window_ms: int = 200) -> ChangeDebouncer:
    _FakeTimer.created = []
    return ChangeDebouncer(flushes.append, window_ms=window_ms, timer_factory=_FakeTimer)


def test_burst_of_events_becomes_one_flush() -> None:
    flushes: list[frozenset[Path]] = []
    d = _debouncer(flushes)

    for name in ("a.txt", "b.txt", "a.txt", "c/d.txt"):
        d.on_event(name)

    assert len(_FakeTimer.created) == 1
    timer = _FakeTimer.created[0]
    assert timer.started and timer.daemon
    assert timer.interval == 0.2
    assert flushes == []

    timer.fire()
    assert flushes == [frozenset({Path("a.txt"), Path("b.txt"), Path("c/d.txt")})]
    assert d.stats == (4, 1)

    d.on_event("e.txt")
    assert len(_FakeTimer.created) == 2


def test_flush_delivers_once_even_if_timer_fires_later() -> None:
    flushes: list[frozenset[Path]] = []
    d = _debouncer(flushes)
    d.on_event("a.txt")
    timer = _FakeTimer.created[0]

    assert d.flush()
    assert timer.cancelled
    timer.fire()

    assert len(flushes) == 1
    assert not d.flush()
    assert not d.pending


def test_closed_debouncer_ignores_events() -> None:
    flushes: list[frozenset[Path]] = []
    d = _debouncer(flushes)
    d.on_event("a.txt")
    timer = _FakeTimer.created[0]

    d.close()
    timer.fire()
    d.on_event("b.txt")

    assert flushes == []
    assert timer.cancelled


def test_zero_window_delivers_immediately_and_survives_callback_errors() -> None:
    calls: list[frozenset[Path]] = []

    def broken(paths: frozenset[Path]) -> None:
        calls.append(paths)
        raise RuntimeError("boom")

    d = ChangeDebouncer(broken, window_ms=0)
    d.on_event()
    d.on_event("x")

    assert calls == [frozenset(), frozenset({Path("x")})]
