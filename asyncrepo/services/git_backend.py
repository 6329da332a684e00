"""GitPython implementation of the backend facade.

Every call opens its own short-lived :class:`git.Repo` so read kinds can run
concurrently on the read lane; the engine guarantees mutating kinds only
ever run one at a time.

Remote kinds receive a :class:`RemoteRequest`. Credentials are asked from
``request.callbacks`` up front for network remotes and again after every
authentication failure, until the callbacks run out of methods. Progress is
forwarded through :class:`ProgressBridge`, which is also where cancellation
is noticed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from git import (
    FetchInfo,
    Git,
    GitCommandError,
    InvalidGitRepositoryError,
    NoSuchPathError,
    PushInfo,
    Remote,
    RemoteReference,
    Repo,
)
from git.exc import BadName, BadObject, GitCommandNotFound

from asyncrepo.application.ports.backend import (
    BlameParams,
    CommitFilesParams,
    CommitParams,
    DiffParams,
    LogParams,
    RepoPath,
    StageParams,
)
from asyncrepo.config import SLOW_BACKEND_CALL_MS
from asyncrepo.core.errors import (
    AuthenticationError,
    BackendError,
    CancelledError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from asyncrepo.core.kinds import JobKind
from asyncrepo.core.observability.timing import time_block
from asyncrepo.core.remote.controller import RemoteRequest
from asyncrepo.core.remote.state import RemoteTarget
from asyncrepo.services.git_models import (
    BlameHunk,
    BranchInfo,
    CommitFile,
    CommitInfo,
    DiffPayload,
    FileBlame,
    RemoteResult,
    StatusSnapshot,
    TagInfo,
)
from asyncrepo.services.git_parsing import (
    LOG_FORMAT,
    allowed_methods,
    commit_message,
    convert_git_error,
    is_auth_failure,
    parse_log_records,
    parse_porcelain_status,
    url_username,
)
from asyncrepo.services.git_transport import ProgressBridge, credential_environment

logger = logging.getLogger(__name__)

_PUSH_FAILED = PushInfo.ERROR | PushInfo.REJECTED | PushInfo.REMOTE_REJECTED | PushInfo.REMOTE_FAILURE


def _require(params: Any, cls: type, kind: JobKind) -> Any:
    if not isinstance(params, cls):
        raise ValidationError(f"{kind.value} expects {cls.__name__}, got {type(params).__name__}")
    return params


class GitBackend:
    def __init__(self, repo_path: RepoPath) -> None:
        self._repo_path = repo_path
        self._handlers: dict[JobKind, Callable[[Any], Any]] = {
            JobKind.STATUS: self._status,
            JobKind.DIFF: self._diff,
            JobKind.LOG: self._log,
            JobKind.BLAME: self._blame,
            JobKind.TAGS: self._tags,
            JobKind.BRANCHES: self._branches,
            JobKind.COMMIT_FILES: self._commit_files,
            JobKind.STAGE: self._stage,
            JobKind.UNSTAGE: self._unstage,
            JobKind.COMMIT: self._commit,
            JobKind.FETCH: self._remote_op,
            JobKind.PUSH: self._remote_op,
            JobKind.PULL: self._remote_op,
        }

    @property
    def repo_path(self) -> RepoPath:
        return self._repo_path

    def execute(self, kind: JobKind, params: Any) -> Any:
        handler = self._handlers.get(kind)
        if handler is None:
            raise BackendError(f"unsupported operation: {kind.value}")
        with time_block(f"git.{kind.value}", logger=logger, slow_ms=SLOW_BACKEND_CALL_MS):
            try:
                return handler(params)
            except GitCommandError as e:
                raise convert_git_error(e, kind.value) from e
            except GitCommandNotFound as e:
                raise BackendError("git executable not found", cause=e) from e
            except (BadName, BadObject) as e:
                raise NotFoundError(f"{kind.value}: unknown object {e}", cause=e) from e

    @contextmanager
    def _open(self) -> Iterator[Repo]:
        path = self._repo_path
        try:
            repo = Repo(str(path.gitdir), search_parent_directories=path.workdir is None)
        except NoSuchPathError as e:
            raise NotFoundError(f"repository path does not exist: {path.gitdir}", cause=e) from e
        except InvalidGitRepositoryError as e:
            raise NotFoundError(f"not a git repository: {path.gitdir}", cause=e) from e
        try:
            if path.workdir is not None:
                repo.git = Git(str(path.workdir))
                repo.git.update_environment(GIT_DIR=str(repo.git_dir), GIT_WORK_TREE=str(path.workdir))
            yield repo
        finally:
            repo.close()

    # ---- read kinds ---------------------------------------------------

    def _status(self, _params: Any) -> StatusSnapshot:
        with self._open() as repo:
            out = repo.git.status("--porcelain=v1", "-z", "--branch", "--untracked-files=all")
        return parse_porcelain_status(out)

    def _diff(self, params: Any) -> DiffPayload:
        p: DiffParams = _require(params, DiffParams, JobKind.DIFF)
        with self._open() as repo:
            args = ["--no-color", "--no-ext-diff"]
            if p.staged:
                args.append("--cached")
            text = repo.git.diff(*args, "--", p.path)
            if not text and not p.staged:
                untracked = repo.git.ls_files("--others", "--exclude-standard", "--", p.path)
                if untracked:
                    # --no-index exits 1 when the files differ.
                    text = repo.git.diff(
                        "--no-color", "--no-index", "--", "/dev/null", p.path, with_exceptions=False
                    )
        return DiffPayload(path=p.path, staged=p.staged, text=text)

    def _log(self, params: Any) -> tuple[CommitInfo, ...]:
        p: LogParams = _require(params, LogParams, JobKind.LOG) if params is not None else LogParams()
        with self._open() as repo:
            if p.rev == "HEAD" and not repo.head.is_valid():
                return ()
            out = repo.git.log(p.rev, f"--format={LOG_FORMAT}", f"--max-count={p.limit}")
        return parse_log_records(out, message_limit=p.message_limit)

    def _blame(self, params: Any) -> FileBlame:
        p: BlameParams = _require(params, BlameParams, JobKind.BLAME)
        hunks: list[BlameHunk] = []
        line = 1
        with self._open() as repo:
            for commit, lines in repo.blame(p.rev, p.path) or []:
                text = tuple(
                    raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else str(raw)
                    for raw in lines
                )
                hunks.append(
                    BlameHunk(
                        commit_id=commit.hexsha,
                        author=commit.author.name or "<unknown>",
                        time=int(commit.authored_date),
                        start_line=line,
                        lines=text,
                    )
                )
                line += len(text)
        return FileBlame(path=p.path, rev=p.rev, hunks=tuple(hunks))

    def _tags(self, _params: Any) -> tuple[TagInfo, ...]:
        tags: list[TagInfo] = []
        with self._open() as repo:
            for tag in repo.tags:
                try:
                    commit_id = tag.commit.hexsha
                except ValueError:
                    logger.debug("Skipping tag %s: not pointing at a commit", tag.name)
                    continue
                annotation = tag.tag.message.strip() if tag.tag is not None else None
                tags.append(TagInfo(name=tag.name, commit_id=commit_id, annotation=annotation))
        return tuple(sorted(tags, key=lambda t: t.name))

    def _branches(self, _params: Any) -> tuple[BranchInfo, ...]:
        branches: list[BranchInfo] = []
        with self._open() as repo:
            head_name = None if repo.head.is_detached else repo.head.ref.name
            for head in repo.heads:
                tracking = head.tracking_branch()
                branches.append(
                    BranchInfo(
                        name=head.name,
                        commit_id=head.commit.hexsha,
                        is_head=head.name == head_name,
                        upstream=tracking.name if tracking is not None else None,
                    )
                )
            for ref in repo.refs:
                if not isinstance(ref, RemoteReference) or ref.remote_head == "HEAD":
                    continue
                branches.append(BranchInfo(name=ref.name, commit_id=ref.commit.hexsha, is_remote=True))
        return tuple(branches)

    def _commit_files(self, params: Any) -> tuple[CommitFile, ...]:
        p: CommitFilesParams = _require(params, CommitFilesParams, JobKind.COMMIT_FILES)
        with self._open() as repo:
            stats = repo.commit(p.commit_id).stats.files
        return tuple(
            CommitFile(path=str(path), insertions=int(s["insertions"]), deletions=int(s["deletions"]))
            for path, s in sorted(stats.items())
        )

    # ---- mutating kinds -----------------------------------------------

    def _stage(self, params: Any) -> tuple[str, ...]:
        p: StageParams = _require(params, StageParams, JobKind.STAGE)
        if not p.paths:
            return ()
        with self._open() as repo:
            repo.git.add("--", *p.paths)
        logger.info("Staged %d path(s)", len(p.paths))
        return p.paths

    def _unstage(self, params: Any) -> tuple[str, ...]:
        p: StageParams = _require(params, StageParams, JobKind.UNSTAGE)
        if not p.paths:
            return ()
        with self._open() as repo:
            if repo.head.is_valid():
                repo.git.reset("-q", "HEAD", "--", *p.paths)
            else:
                # Nothing committed yet: unstaging means dropping from the index.
                repo.git.rm("--cached", "-q", "--", *p.paths)
        logger.info("Unstaged %d path(s)", len(p.paths))
        return p.paths

    def _commit(self, params: Any) -> CommitInfo:
        p: CommitParams = _require(params, CommitParams, JobKind.COMMIT)
        if not p.message.strip() and not p.amend:
            raise ValidationError("commit message is empty")
        with self._open() as repo:
            args = ["-m", p.message]
            if p.amend:
                args.append("--amend")
            # Through the CLI so commit hooks run.
            repo.git.commit(*args)
            head = repo.head.commit
            info = CommitInfo(
                id=head.hexsha,
                message=commit_message(str(head.message)),
                author=head.author.name or "<unknown>",
                time=int(head.committed_date),
            )
        logger.info("Committed %s", info.short_id)
        return info

    # ---- remote kinds -------------------------------------------------

    def _remote_op(self, params: Any) -> RemoteResult:
        if not isinstance(params, RemoteRequest):
            raise ValidationError(f"remote operation expects RemoteRequest, got {type(params).__name__}")
        kind, target, callbacks = params.kind, params.target, params.callbacks
        with self._open() as repo:
            try:
                remote = repo.remote(target.remote)
            except ValueError as e:
                raise NotFoundError(f"no such remote: {target.remote}", cause=e) from e
            url = next(iter(remote.urls), "")
            allowed = allowed_methods(url)
            username = url_username(url)

            credential = None
            if allowed is not None:
                credential = callbacks.credentials(url, username, allowed)
                if credential is None:
                    raise AuthenticationError(f"no usable credentials for {url}")

            while True:
                bridge = ProgressBridge(callbacks)
                try:
                    with credential_environment(credential) as env, repo.git.custom_environment(**env):
                        result = self._transfer(kind, repo, remote, target, bridge)
                except GitCommandError as e:
                    if bridge.aborted or callbacks.is_cancelled():
                        raise CancelledError(f"{kind.value} cancelled", cause=e) from e
                    if allowed is None or not is_auth_failure(e):
                        raise convert_git_error(e, kind.value) from e
                    logger.info("%s: authentication failed for %s", kind.value, url)
                    credential = callbacks.credentials(url, username, allowed)
                    if credential is None:
                        raise convert_git_error(e, kind.value) from e
                else:
                    if bridge.aborted:
                        # git exits 0 when the abort came too late to stop it.
                        raise CancelledError(f"{kind.value} cancelled")
                    return result

    def _transfer(
        self,
        kind: JobKind,
        repo: Repo,
        remote: Remote,
        target: RemoteTarget,
        bridge: ProgressBridge,
    ) -> RemoteResult:
        if kind is JobKind.FETCH:
            infos = remote.fetch(refspec=target.branch, progress=bridge)
            updated = tuple(i.name for i in infos if not i.flags & FetchInfo.HEAD_UPTODATE)
        elif kind is JobKind.PULL:
            infos = remote.pull(refspec=target.branch, progress=bridge)
            updated = tuple(i.name for i in infos if not i.flags & FetchInfo.HEAD_UPTODATE)
        else:
            refspec = target.branch or _current_branch(repo)
            push_infos = remote.push(refspec=refspec, progress=bridge, force=target.force)
            failed = [i for i in push_infos if i.flags & _PUSH_FAILED]
            if failed:
                raise ConflictError(
                    "push rejected: " + ", ".join(f"{i.remote_ref_string} ({i.summary.strip()})" for i in failed)
                )
            updated = tuple(i.remote_ref_string for i in push_infos if not i.flags & PushInfo.UP_TO_DATE)
        logger.info("%s %s: %d ref(s) updated", kind.value, target.remote, len(updated))
        return RemoteResult(remote=target.remote, updated_refs=updated)


def _current_branch(repo: Repo) -> str:
    if repo.head.is_detached:
        raise ConflictError("HEAD is detached; name a branch to push")
    return repo.active_branch.name
