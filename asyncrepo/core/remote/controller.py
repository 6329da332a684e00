"""Multi-phase controller for fetch/push/pull.

Remote operations reuse the :class:`JobSlot` machinery by composition: the
controller owns one slot per remote kind for generation tracking, dispatch on
the serialized WRITE lane, caching and JobCompleted/JobFailed notifications.
On top of that every started operation gets its own
:class:`RemoteOperationState`, a :class:`CredentialResolver`, a cancel token
and a progress throttle.

The backend drives the state machine through the per-operation
:class:`RemoteCallbacks` it finds in :class:`RemoteRequest`:

- ``credentials()`` moves Connecting -> AwaitingCredentials -> Connecting and
  hands out the next configured credential;
- ``progress()`` moves Connecting -> Transferring, merges counters so they
  never decrease and pushes throttled RemoteOpProgress notifications.

Cancellation is cooperative and best-effort: ``cancel`` only sets a flag; the
backend sees it at its next ``progress``/``credentials`` checkpoint. A backend
that never calls back again finishes normally.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from threading import Event, Lock
from typing import Any, Protocol

from asyncrepo.config import DEFAULT_PROGRESS_MAX_RATE_HZ
from asyncrepo.core.cache import ResultCache
from asyncrepo.core.errors import (
    AuthenticationError,
    AuthExhausted,
    CancelledError,
    InvalidTransition,
    UnknownOperationError,
)
from asyncrepo.core.events import NotificationChannel, RemoteOpProgress
from asyncrepo.core.jobs import Dispatcher, JobRequest, JobSlot
from asyncrepo.core.kinds import JobKind
from asyncrepo.core.remote.credentials import (
    Credential,
    CredentialConfig,
    CredentialMethod,
    CredentialResolver,
)
from asyncrepo.core.remote.progress import ProgressThrottle
from asyncrepo.core.remote.state import (
    FailureReason,
    OperationHandle,
    RemoteOperationState,
    RemoteOpSnapshot,
    RemotePhase,
    RemoteTarget,
    TransferProgress,
)

logger = logging.getLogger(__name__)


class CancelToken:
    """Cooperative cancellation token for remote operations."""

    def __init__(self) -> None:
        self._evt = Event()

    def cancel(self) -> None:
        self._evt.set()

    def is_cancelled(self) -> bool:
        return self._evt.is_set()


class RemoteCallbacks(Protocol):
    def credentials(
        self,
        url: str,
        username_from_url: str | None = None,
        allowed: frozenset[CredentialMethod] | None = None,
    ) -> Credential | None:
        """Next credential to try, or None (methods exhausted or cancelled)."""

    def progress(self, update: TransferProgress) -> bool:
        """Report transfer counters; False asks the backend to abort."""

    def is_cancelled(self) -> bool:
        """Cancellation checkpoint for backends without progress reporting."""


@dataclass(frozen=True, slots=True)
class RemoteRequest:
    """Parameters handed to the backend for one remote operation."""

    op_id: str
    kind: JobKind
    target: RemoteTarget
    callbacks: RemoteCallbacks = field(compare=False, repr=False)

    def cache_identity(self) -> dict[str, Any]:
        return {
            "remote": self.target.remote,
            "branch": self.target.branch,
            "force": self.target.force,
        }


class _RemoteOperation:
    def __init__(
        self,
        state: RemoteOperationState,
        resolver: CredentialResolver,
        throttle: ProgressThrottle,
        channel: NotificationChannel,
    ) -> None:
        self.state = state
        self.resolver = resolver
        self.throttle = throttle
        self.cancel_token = CancelToken()
        self.cancel_acknowledged = False
        self.auth_requested = False
        self.observed = False
        self.generation = 0
        self._channel = channel

    def notify(self, *, force: bool = False) -> None:
        if self.throttle.should_emit(force=force):
            self._channel.push(
                RemoteOpProgress(
                    op_id=self.state.op_id,
                    kind=self.state.kind,
                    phase=self.state.phase,
                    progress=self.state.progress,
                )
            )

    def move(self, dst: RemotePhase) -> None:
        if self.state.transition(dst):
            logger.debug(
                "Remote %s %s -> %s",
                self.state.kind.value,
                self.state.op_id,
                dst.value,
                extra={"op_id": self.state.op_id, "phase": dst.value},
            )
            self.notify(force=True)

    def checkpoint(self) -> bool:
        """True if cancellation was requested; records that the backend saw it."""
        if self.cancel_token.is_cancelled():
            self.cancel_acknowledged = True
            return True
        return False

    def snapshot(self) -> RemoteOpSnapshot:
        return self.state.snapshot(cancel_requested=self.cancel_token.is_cancelled())


class _OperationCallbacks:
    """RemoteCallbacks bound to one operation; called on the worker thread."""

    def __init__(self, op: _RemoteOperation) -> None:
        self._op = op

    def credentials(
        self,
        url: str,
        username_from_url: str | None = None,
        allowed: frozenset[CredentialMethod] | None = None,
    ) -> Credential | None:
        op = self._op
        if op.checkpoint():
            return None
        op.auth_requested = True
        # Mid-transfer re-authentication keeps the Transferring phase.
        connecting = op.state.phase is RemotePhase.CONNECTING
        if connecting:
            op.move(RemotePhase.AWAITING_CREDENTIALS)
        cred = op.resolver.next_credential(url, username_from_url, allowed)
        op.state.record_attempts(op.resolver.attempts)
        if cred is None:
            logger.info("Credential methods exhausted for %s", url)
            return None
        if connecting:
            op.move(RemotePhase.CONNECTING)
        return cred

    def progress(self, update: TransferProgress) -> bool:
        op = self._op
        if op.checkpoint():
            return False
        if op.state.phase is RemotePhase.CONNECTING:
            op.resolver.mark_success()
            op.state.record_attempts(op.resolver.attempts)
            op.state.advance_progress(update)
            op.move(RemotePhase.TRANSFERRING)
            return True
        op.state.advance_progress(update)
        op.notify()
        return True

    def is_cancelled(self) -> bool:
        return self._op.checkpoint()


class RemoteOpController:
    def __init__(
        self,
        *,
        dispatcher: Dispatcher,
        channel: NotificationChannel,
        cache: ResultCache,
        execute: Callable[[JobKind, RemoteRequest], Any],
        progress_max_rate_hz: float = DEFAULT_PROGRESS_MAX_RATE_HZ,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._channel = channel
        self._execute = execute
        self._rate = progress_max_rate_hz
        self._clock = clock
        self._lock = Lock()
        self._ops: dict[str, _RemoteOperation] = {}
        self._slots: dict[JobKind, JobSlot[Any]] = {
            kind: JobSlot(kind, dispatcher=dispatcher, channel=channel, cache=cache, run=self._run)
            for kind in (JobKind.FETCH, JobKind.PUSH, JobKind.PULL)
        }

    def slot(self, kind: JobKind) -> JobSlot[Any]:
        return self._slots[kind]

    def start(
        self,
        kind: JobKind,
        target: RemoteTarget | None = None,
        credential_config: CredentialConfig | None = None,
    ) -> OperationHandle:
        """Dispatch a remote operation; raises QueueFull if the write lane is full."""
        if kind not in self._slots:
            raise ValueError(f"{kind.value} is not a remote operation")
        self._prune_observed()
        op_id = uuid.uuid4().hex
        target = target or RemoteTarget()
        op = _RemoteOperation(
            state=RemoteOperationState(op_id=op_id, kind=kind, target=target),
            resolver=CredentialResolver(credential_config or CredentialConfig.default()),
            throttle=ProgressThrottle(self._rate, clock=self._clock),
            channel=self._channel,
        )
        request = RemoteRequest(op_id=op_id, kind=kind, target=target, callbacks=_OperationCallbacks(op))
        with self._lock:
            self._ops[op_id] = op
        try:
            req = self._slots[kind].spawn(request)
        except Exception:
            with self._lock:
                self._ops.pop(op_id, None)
            raise
        op.generation = req.generation
        logger.info("Started %s %s (remote=%s)", kind.value, op_id, target.remote)
        return OperationHandle(op_id=op_id, kind=kind, generation=req.generation)

    def cancel(self, handle: OperationHandle) -> bool:
        """Request cancellation; False if the operation already ended."""
        op = self._get(handle)
        if op.state.phase.is_terminal:
            return False
        op.cancel_token.cancel()
        logger.info("Cancellation requested for %s %s", handle.kind.value, handle.op_id)
        return True

    def cancel_unstarted(self) -> list[OperationHandle]:
        """Move operations that never left Idle to Cancelled.

        Called when queued work is dropped at shutdown; their worker-side
        ``_run`` will never execute.
        """
        with self._lock:
            ops = list(self._ops.values())
        cancelled: list[OperationHandle] = []
        for op in ops:
            if op.state.phase is not RemotePhase.IDLE:
                continue
            op.cancel_token.cancel()
            try:
                op.move(RemotePhase.CANCELLED)
            except InvalidTransition:
                # A worker picked it up meanwhile; its own checkpoint handles the flag.
                continue
            op.state.note_error("engine shut down before start")
            cancelled.append(
                OperationHandle(op_id=op.state.op_id, kind=op.state.kind, generation=op.generation)
            )
        if cancelled:
            logger.info("Cancelled %d queued remote operation(s)", len(cancelled))
        return cancelled

    def state(self, handle: OperationHandle) -> RemoteOpSnapshot:
        """Snapshot of the operation; a terminal snapshot marks it observed.

        Observed operations are released on the next ``start``.
        """
        op = self._get(handle)
        snap = op.snapshot()
        if snap.phase.is_terminal:
            op.observed = True
        return snap

    def release(self, handle: OperationHandle) -> None:
        with self._lock:
            self._ops.pop(handle.op_id, None)

    def active(self) -> list[OperationHandle]:
        with self._lock:
            ops = list(self._ops.values())
        return [
            OperationHandle(op_id=o.state.op_id, kind=o.state.kind, generation=o.generation)
            for o in ops
            if not o.state.phase.is_terminal
        ]

    def _get(self, handle: OperationHandle) -> _RemoteOperation:
        with self._lock:
            op = self._ops.get(handle.op_id)
        if op is None:
            raise UnknownOperationError(f"unknown or released remote operation {handle.op_id}")
        return op

    def _prune_observed(self) -> None:
        with self._lock:
            for op_id in [k for k, o in self._ops.items() if o.observed]:
                del self._ops[op_id]

    def _run(self, req: JobRequest) -> Any:
        # Runs on the write-lane worker.
        request: RemoteRequest = req.params
        with self._lock:
            op = self._ops[request.op_id]
        if op.checkpoint():
            op.move(RemotePhase.CANCELLED)
            raise CancelledError(f"{req.kind.value} cancelled before start")

        try:
            op.move(RemotePhase.CONNECTING)
        except InvalidTransition as e:
            raise CancelledError(f"{req.kind.value} cancelled before start", cause=e) from e
        try:
            payload = self._execute(req.kind, request)
        except Exception as e:
            out = self._fail(op, e)
            if out is e:
                raise
            raise out from e
        op.resolver.mark_success()
        op.state.record_attempts(op.resolver.attempts)
        op.move(RemotePhase.COMPLETED)
        logger.info("%s %s completed", req.kind.value, request.op_id)
        return payload

    def _fail(self, op: _RemoteOperation, error: Exception) -> Exception:
        state = op.state
        if isinstance(error, CancelledError) or op.cancel_acknowledged:
            op.move(RemotePhase.CANCELLED)
            logger.info("%s %s cancelled", state.kind.value, state.op_id)
            return error if isinstance(error, CancelledError) else CancelledError(
                f"{state.kind.value} cancelled", cause=error
            )

        if isinstance(error, AuthenticationError):
            op.resolver.mark_failure()
        state.record_attempts(op.resolver.attempts)
        if op.auth_requested and op.resolver.exhausted:
            reason = FailureReason.AUTH_EXHAUSTED
            out: Exception = AuthExhausted(
                f"all {len(state.attempts)} credential methods failed for {state.target.remote}",
                cause=error,
            )
        else:
            reason = FailureReason.BACKEND
            out = error
        state.fail(reason, str(out))
        op.move(RemotePhase.FAILED)
        logger.warning("%s %s failed: %s", state.kind.value, state.op_id, out)
        return out
