"""Backend facade port.

The engine never talks to a version-control library directly; it dispatches
``execute(kind, params)`` calls into any object satisfying :class:`Backend`.
Read kinds may be called concurrently from several worker threads and must
use their own short-lived handles; mutating kinds are only ever called from
the single write-lane worker.

Remote kinds receive a :class:`~asyncrepo.core.remote.controller.RemoteRequest`
whose ``callbacks`` drive credentials, progress and cancellation.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from asyncrepo.config import DEFAULT_LOG_LIMIT, DEFAULT_LOG_MESSAGE_LIMIT
from asyncrepo.core.kinds import JobKind


@runtime_checkable
class Backend(Protocol):
    def execute(self, kind: JobKind, params: Any) -> Any:
        """Run one blocking operation; raise BackendError subclasses on failure."""
        ...


@dataclass(frozen=True, slots=True)
class RepoPath:
    """Repository location: a git dir / repo root, optionally with a separate work tree."""

    gitdir: Path
    workdir: Path | None = None

    @classmethod
    def from_args(cls, directory: str | os.PathLike[str] | None, workdir: str | os.PathLike[str] | None = None) -> RepoPath:
        gitdir = Path(directory) if directory else Path(".")
        return cls(gitdir=gitdir, workdir=Path(workdir) if workdir else None)

    def __str__(self) -> str:
        if self.workdir is None:
            return str(self.gitdir)
        return f"{self.gitdir} (workdir {self.workdir})"


@dataclass(frozen=True, slots=True)
class DiffParams:
    path: str
    staged: bool = False


@dataclass(frozen=True, slots=True)
class LogParams:
    rev: str = "HEAD"
    limit: int = DEFAULT_LOG_LIMIT
    message_limit: int = DEFAULT_LOG_MESSAGE_LIMIT


@dataclass(frozen=True, slots=True)
class BlameParams:
    path: str
    rev: str = "HEAD"


@dataclass(frozen=True, slots=True)
class CommitFilesParams:
    commit_id: str


@dataclass(frozen=True, slots=True)
class StageParams:
    paths: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class CommitParams:
    message: str
    amend: bool = False
