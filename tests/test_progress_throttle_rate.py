from __future__ import annotations

from asyncrepo.core.remote.progress import ProgressThrottle


def test_throttle_allows_at_most_rate_per_second() -> None:
    t = {"now": 100.0}
    throttle = ProgressThrottle(10.0, clock=lambda: t["now"])

    assert throttle.should_emit()
    t["now"] = 100.05
    assert not throttle.should_emit()
    t["now"] = 100.1
    assert throttle.should_emit()


def test_forced_emit_bypasses_limit_and_zero_rate_disables_it() -> None:
    t = {"now": 0.0}
    throttle = ProgressThrottle(10.0, clock=lambda: t["now"])
    assert throttle.should_emit()
    assert throttle.should_emit(force=True)
    assert not throttle.should_emit()

    unlimited = ProgressThrottle(0, clock=lambda: t["now"])
    assert unlimited.min_interval == 0.0
    assert all(unlimited.should_emit() for _ in range(5))


def test_updates_exactly_at_the_interval_are_not_halved() -> None:
    t = {"now": 100.0}
    throttle = ProgressThrottle(10.0, clock=lambda: t["now"])

    emitted = 0
    for step in range(10):
        t["now"] = 100.0 + step * 0.1
        emitted += throttle.should_emit()

    assert emitted == 10
