"""Phase state machine for remote operations (fetch/push/pull).

One :class:`RemoteOperationState` exists per started operation. Transitions are
validated against ``_ALLOWED``; terminal phases have no outgoing edges, and the
only backward edge is AwaitingCredentials -> Connecting (a new credential
attempt).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from threading import Lock

from asyncrepo.core.errors import InvalidTransition
from asyncrepo.core.kinds import JobKind
from asyncrepo.core.remote.credentials import CredentialAttempt


class RemotePhase(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    AWAITING_CREDENTIALS = "awaiting_credentials"
    TRANSFERRING = "transferring"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PHASES


TERMINAL_PHASES = frozenset({RemotePhase.COMPLETED, RemotePhase.FAILED, RemotePhase.CANCELLED})

_ALLOWED: dict[RemotePhase, frozenset[RemotePhase]] = {
    RemotePhase.IDLE: frozenset({RemotePhase.CONNECTING, RemotePhase.FAILED, RemotePhase.CANCELLED}),
    RemotePhase.CONNECTING: frozenset(
        {
            RemotePhase.AWAITING_CREDENTIALS,
            RemotePhase.TRANSFERRING,
            RemotePhase.COMPLETED,
            RemotePhase.FAILED,
            RemotePhase.CANCELLED,
        }
    ),
    RemotePhase.AWAITING_CREDENTIALS: frozenset(
        {RemotePhase.CONNECTING, RemotePhase.FAILED, RemotePhase.CANCELLED}
    ),
    RemotePhase.TRANSFERRING: frozenset(
        {RemotePhase.COMPLETED, RemotePhase.FAILED, RemotePhase.CANCELLED}
    ),
    RemotePhase.COMPLETED: frozenset(),
    RemotePhase.FAILED: frozenset(),
    RemotePhase.CANCELLED: frozenset(),
}


def can_transition(src: RemotePhase, dst: RemotePhase) -> bool:
    return dst in _ALLOWED[src]


class FailureReason(str, Enum):
    AUTH_EXHAUSTED = "auth_exhausted"
    BACKEND = "backend"
    QUEUE_FULL = "queue_full"


@dataclass(frozen=True, slots=True)
class TransferProgress:
    received_objects: int = 0
    total_objects: int = 0
    indexed_objects: int = 0
    received_bytes: int = 0

    def merged(self, other: TransferProgress) -> TransferProgress:
        """Field-wise maximum, so reported counters never go backwards."""
        return TransferProgress(
            received_objects=max(self.received_objects, other.received_objects),
            total_objects=max(self.total_objects, other.total_objects),
            indexed_objects=max(self.indexed_objects, other.indexed_objects),
            received_bytes=max(self.received_bytes, other.received_bytes),
        )

    @property
    def fraction(self) -> float:
        if self.total_objects <= 0:
            return 0.0
        return min(1.0, self.received_objects / self.total_objects)


@dataclass(frozen=True, slots=True)
class RemoteTarget:
    remote: str = "origin"
    branch: str | None = None
    force: bool = False


@dataclass(frozen=True, slots=True)
class OperationHandle:
    op_id: str
    kind: JobKind
    generation: int


@dataclass(frozen=True, slots=True)
class RemoteOpSnapshot:
    """Immutable view of a remote operation handed to consumers."""

    op_id: str
    kind: JobKind
    phase: RemotePhase
    progress: TransferProgress
    attempts: tuple[CredentialAttempt, ...]
    cancel_requested: bool
    failure: FailureReason | None = None
    error: str | None = None


@dataclass(slots=True)
class RemoteOperationState:
    op_id: str
    kind: JobKind
    target: RemoteTarget
    phase: RemotePhase = RemotePhase.IDLE
    progress: TransferProgress = field(default_factory=TransferProgress)
    attempts: list[CredentialAttempt] = field(default_factory=list)
    failure: FailureReason | None = None
    error: str | None = None
    history: list[RemotePhase] = field(default_factory=lambda: [RemotePhase.IDLE])
    _lock: Lock = field(default_factory=Lock, repr=False)

    def transition(self, dst: RemotePhase) -> bool:
        """Move to *dst*; returns False when already there.

        Raises InvalidTransition for edges the machine does not allow,
        including any edge out of a terminal phase.
        """
        with self._lock:
            if self.phase == dst:
                return False
            if not can_transition(self.phase, dst):
                raise InvalidTransition(
                    f"{self.kind.value} {self.op_id}: {self.phase.value} -> {dst.value}"
                )
            self.phase = dst
            self.history.append(dst)
            return True

    def record_attempts(self, attempts: list[CredentialAttempt]) -> None:
        with self._lock:
            self.attempts = list(attempts)

    def fail(self, reason: FailureReason, error: str) -> None:
        with self._lock:
            self.failure = reason
            self.error = error

    def note_error(self, error: str) -> None:
        with self._lock:
            self.error = error

    def advance_progress(self, update: TransferProgress) -> TransferProgress:
        with self._lock:
            self.progress = self.progress.merged(update)
            return self.progress

    def snapshot(self, *, cancel_requested: bool) -> RemoteOpSnapshot:
        with self._lock:
            return RemoteOpSnapshot(
                op_id=self.op_id,
                kind=self.kind,
                phase=self.phase,
                progress=self.progress,
                attempts=tuple(self.attempts),
                cancel_requested=cancel_requested,
                failure=self.failure,
                error=self.error,
            )
