from .backend import (
    Backend,
    BlameParams,
    CommitFilesParams,
    CommitParams,
    DiffParams,
    LogParams,
    RepoPath,
    StageParams,
)

__all__ = [
    "Backend",
    "BlameParams",
    "CommitFilesParams",
    "CommitParams",
    "DiffParams",
    "LogParams",
    "RepoPath",
    "StageParams",
]
