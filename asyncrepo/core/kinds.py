from __future__ import annotations

from enum import Enum


class ResourceClass(str, Enum):
    """Contention domain a job kind belongs to.

    READ jobs may run concurrently with independent backend handles; WRITE jobs
    share one backend-exclusive lane.
    """

    READ = "read"
    WRITE = "write"


class JobKind(str, Enum):
    STATUS = "status"
    DIFF = "diff"
    LOG = "log"
    BLAME = "blame"
    TAGS = "tags"
    BRANCHES = "branches"
    COMMIT_FILES = "commit_files"
    STAGE = "stage"
    UNSTAGE = "unstage"
    COMMIT = "commit"
    FETCH = "fetch"
    PUSH = "push"
    PULL = "pull"

    @property
    def is_mutating(self) -> bool:
        return self in _MUTATING

    @property
    def is_remote(self) -> bool:
        return self in REMOTE_KINDS

    @property
    def resource_class(self) -> ResourceClass:
        return ResourceClass.WRITE if self.is_mutating else ResourceClass.READ


REMOTE_KINDS = frozenset({JobKind.FETCH, JobKind.PUSH, JobKind.PULL})
_MUTATING = frozenset({JobKind.STAGE, JobKind.UNSTAGE, JobKind.COMMIT}) | REMOTE_KINDS
