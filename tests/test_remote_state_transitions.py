from __future__ import annotations

import pytest

from asyncrepo.core.errors import InvalidTransition
from asyncrepo.core.kinds import JobKind
from asyncrepo.core.remote.state import (
    RemoteOperationState,
    RemotePhase,
    RemoteTarget,
    TransferProgress,
    can_transition,
)


def _state() -> RemoteOperationState:
    return RemoteOperationState(op_id="op", kind=JobKind.FETCH, target=RemoteTarget())


def test_credential_retry_loop_is_the_only_backward_edge() -> None:
    s = _state()
    for phase in (
        RemotePhase.CONNECTING,
        RemotePhase.AWAITING_CREDENTIALS,
        RemotePhase.CONNECTING,
        RemotePhase.AWAITING_CREDENTIALS,
        RemotePhase.CONNECTING,
        RemotePhase.TRANSFERRING,
        RemotePhase.COMPLETED,
    ):
        assert s.transition(phase)
    assert s.history[0] is RemotePhase.IDLE
    assert s.history[-1] is RemotePhase.COMPLETED

    assert not can_transition(RemotePhase.TRANSFERRING, RemotePhase.CONNECTING)
    assert not can_transition(RemotePhase.TRANSFERRING, RemotePhase.AWAITING_CREDENTIALS)


@pytest.mark.parametrize("terminal", [RemotePhase.COMPLETED, RemotePhase.FAILED, RemotePhase.CANCELLED])
def test_nothing_leaves_a_terminal_phase(terminal: RemotePhase) -> None:
    s = _state()
    s.transition(RemotePhase.CONNECTING)
    s.transition(terminal)
    for dst in RemotePhase:
        if dst is terminal:
            assert not s.transition(dst)
            continue
        with pytest.raises(InvalidTransition):
            s.transition(dst)
    assert s.phase is terminal


def test_progress_counters_never_decrease() -> None:
    s = _state()
    s.advance_progress(TransferProgress(received_objects=10, total_objects=100, received_bytes=4096))
    merged = s.advance_progress(TransferProgress(received_objects=3, total_objects=100, indexed_objects=2))

    assert merged == TransferProgress(
        received_objects=10, total_objects=100, indexed_objects=2, received_bytes=4096
    )
    assert merged.fraction == pytest.approx(0.1)
