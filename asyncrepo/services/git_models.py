"""Payload value objects returned by :class:`~asyncrepo.services.git_backend.GitBackend`.

All payloads are immutable so they can be cached and shared between the
worker that produced them and any number of readers.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

SHORT_ID_LEN = 7


def short_id(commit_id: str) -> str:
    """7 chars short hash."""
    return commit_id[:SHORT_ID_LEN]


class StatusItemType(str, Enum):
    NEW = "new"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"
    TYPECHANGE = "typechange"
    CONFLICTED = "conflicted"


@dataclass(frozen=True, slots=True)
class StatusItem:
    path: str
    status: StatusItemType
    old_path: str | None = None


@dataclass(frozen=True, slots=True)
class StatusSnapshot:
    """Working tree status split into the index and the work dir side.

    Untracked files show up as NEW on the work dir side; conflicts only on
    the work dir side.
    """

    branch: str | None
    upstream: str | None
    ahead: int
    behind: int
    staged: tuple[StatusItem, ...]
    unstaged: tuple[StatusItem, ...]

    @property
    def is_clean(self) -> bool:
        return not self.staged and not self.unstaged


@dataclass(frozen=True, slots=True)
class DiffPayload:
    path: str
    staged: bool
    text: str

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


@dataclass(frozen=True, slots=True)
class CommitInfo:
    """One log entry; ``message`` is the (possibly truncated) subject line."""

    id: str
    message: str
    author: str
    time: int

    @property
    def short_id(self) -> str:
        return short_id(self.id)


@dataclass(frozen=True, slots=True)
class BlameHunk:
    commit_id: str
    author: str
    time: int
    start_line: int
    lines: tuple[str, ...]

    @property
    def end_line(self) -> int:
        return self.start_line + len(self.lines) - 1


@dataclass(frozen=True, slots=True)
class FileBlame:
    path: str
    rev: str
    hunks: tuple[BlameHunk, ...]


@dataclass(frozen=True, slots=True)
class TagInfo:
    name: str
    commit_id: str
    annotation: str | None = None


@dataclass(frozen=True, slots=True)
class BranchInfo:
    name: str
    commit_id: str
    is_head: bool = False
    is_remote: bool = False
    upstream: str | None = None


@dataclass(frozen=True, slots=True)
class CommitFile:
    path: str
    insertions: int
    deletions: int


@dataclass(frozen=True, slots=True)
class RemoteResult:
    """Outcome of a fetch/push/pull: the refs that changed."""

    remote: str
    updated_refs: tuple[str, ...]
    summary: str = ""
