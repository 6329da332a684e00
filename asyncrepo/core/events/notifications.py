from __future__ import annotations

from dataclasses import dataclass

from asyncrepo.core.kinds import JobKind
from asyncrepo.core.remote.state import RemotePhase, TransferProgress


@dataclass(frozen=True, slots=True)
class JobCompleted:
    kind: JobKind
    generation: int


@dataclass(frozen=True, slots=True)
class JobFailed:
    kind: JobKind
    generation: int
    error: str


@dataclass(frozen=True, slots=True)
class RemoteOpProgress:
    """Phase change or throttled transfer counters of one remote operation."""

    op_id: str
    kind: JobKind
    phase: RemotePhase
    progress: TransferProgress


@dataclass(frozen=True, slots=True)
class BackendStateChanged:
    """Cached payloads were invalidated; consumers decide when to re-spawn.

    ``kind`` is None when every kind was invalidated. ``cause`` names the
    mutating job that triggered the invalidation, if any.
    """

    kind: JobKind | None = None
    cause: JobKind | None = None


Notification = JobCompleted | JobFailed | RemoteOpProgress | BackendStateChanged
