"""Pure helpers for turning git output into payloads and git errors into AppErrors.

Nothing in here touches a repository, so all of it is testable without git.
"""

from __future__ import annotations

import re
import unicodedata
from urllib.parse import urlsplit

from git import GitCommandError

from asyncrepo.core.errors import (
    AuthenticationError,
    BackendError,
    ConflictError,
    MalformedDataError,
    NotFoundError,
    PermissionDeniedError,
)
from asyncrepo.core.remote.credentials import CredentialMethod
from asyncrepo.services.git_models import (
    CommitInfo,
    StatusItem,
    StatusItemType,
    StatusSnapshot,
)

# `git log` record layout: fields split by NUL, records by RS.
LOG_FORMAT = "%H%x00%aN%x00%at%x00%B%x1e"

_STATUS_CODES: dict[str, StatusItemType] = {
    "M": StatusItemType.MODIFIED,
    "A": StatusItemType.NEW,
    "D": StatusItemType.DELETED,
    "R": StatusItemType.RENAMED,
    "C": StatusItemType.NEW,
    "T": StatusItemType.TYPECHANGE,
}

_CONFLICT_CODES = frozenset({"DD", "AU", "UD", "UA", "DU", "AA", "UU"})

_BRANCH_RE = re.compile(
    r"^(?P<branch>.+?)(?:\.\.\.(?P<upstream>\S+))?(?: \[(?P<track>[^\]]*)\])?$"
)
_TRACK_RE = re.compile(r"(ahead|behind) (\d+)")
_SCP_URL_RE = re.compile(r"^(?:(?P<user>[^@/]+)@)?(?P<host>[^:/]+):(?P<path>.+)$")

AUTH_FAILURE_PATTERNS: tuple[str, ...] = (
    "authentication failed",
    "permission denied (publickey",
    "permission denied, please try again",
    "could not read username",
    "could not read password",
    "invalid username or password",
    "terminal prompts disabled",
    "access denied",
    "http basic: access denied",
    "returned error: 401",
    "returned error: 403",
)


def truncate_display(text: str, width: int) -> str:
    """Cut *text* so that it occupies at most *width* terminal columns.

    Wide (East Asian) characters count as two columns; combining marks as zero.
    """
    used = 0
    out: list[str] = []
    for ch in text:
        if unicodedata.combining(ch):
            w = 0
        elif unicodedata.east_asian_width(ch) in ("W", "F"):
            w = 2
        else:
            w = 1
        if used + w > width:
            break
        used += w
        out.append(ch)
    return "".join(out)


def commit_message(message: str, limit: int | None = None) -> str:
    """Trimmed commit message; with *limit* only the first line, truncated to fit."""
    msg = message.strip()
    if limit is None:
        return msg
    first = msg.splitlines()[0] if msg else ""
    return truncate_display(first, limit)


def parse_log_records(output: str, *, message_limit: int | None = None) -> tuple[CommitInfo, ...]:
    commits: list[CommitInfo] = []
    for record in output.split("\x1e"):
        record = record.lstrip("\n")
        if not record:
            continue
        parts = record.split("\x00", 3)
        if len(parts) != 4:
            raise MalformedDataError(f"unexpected log record: {record[:80]!r}")
        sha, author, ts, body = parts
        try:
            time = int(ts)
        except ValueError as e:
            raise MalformedDataError(f"bad commit time {ts!r} for {sha}", cause=e) from e
        commits.append(
            CommitInfo(
                id=sha,
                message=commit_message(body, message_limit),
                author=author or "<unknown>",
                time=time,
            )
        )
    return tuple(commits)


def _parse_branch_header(header: str) -> tuple[str | None, str | None, int, int]:
    for prefix in ("No commits yet on ", "Initial commit on "):
        if header.startswith(prefix):
            return header[len(prefix) :], None, 0, 0
    if header.startswith("HEAD (no branch)"):
        return None, None, 0, 0
    m = _BRANCH_RE.match(header)
    if m is None:
        return header, None, 0, 0
    ahead = behind = 0
    for which, n in _TRACK_RE.findall(m.group("track") or ""):
        if which == "ahead":
            ahead = int(n)
        else:
            behind = int(n)
    return m.group("branch"), m.group("upstream"), ahead, behind


def parse_porcelain_status(output: str) -> StatusSnapshot:
    """Parse ``git status --porcelain=v1 -z --branch`` output."""
    records = output.split("\x00")
    branch: str | None = None
    upstream: str | None = None
    ahead = behind = 0
    staged: list[StatusItem] = []
    unstaged: list[StatusItem] = []

    i = 0
    while i < len(records):
        rec = records[i]
        i += 1
        if not rec:
            continue
        if rec.startswith("## "):
            branch, upstream, ahead, behind = _parse_branch_header(rec[3:])
            continue
        if len(rec) < 4 or rec[2] != " ":
            raise MalformedDataError(f"unexpected status record: {rec!r}")
        xy, path = rec[:2], rec[3:]
        x, y = xy[0], xy[1]
        old_path = None
        # Renames and copies carry the source path as the next record.
        if x in "RC" or y in "RC":
            old_path = records[i] if i < len(records) else None
            i += 1

        if xy == "??":
            unstaged.append(StatusItem(path, StatusItemType.NEW))
        elif xy == "!!":
            continue
        elif xy in _CONFLICT_CODES:
            unstaged.append(StatusItem(path, StatusItemType.CONFLICTED))
        else:
            if x in _STATUS_CODES:
                staged.append(
                    StatusItem(path, _STATUS_CODES[x], old_path if x in "RC" else None)
                )
            if y in _STATUS_CODES:
                unstaged.append(
                    StatusItem(path, _STATUS_CODES[y], old_path if y in "RC" else None)
                )

    return StatusSnapshot(
        branch=branch,
        upstream=upstream,
        ahead=ahead,
        behind=behind,
        staged=tuple(staged),
        unstaged=tuple(unstaged),
    )


def parse_size(text: str) -> int:
    """Bytes from a git progress suffix such as ``"1.20 MiB | 2.00 MiB/s"``."""
    m = re.search(r"([\d.]+)\s*(bytes|KiB|MiB|GiB)", text)
    if m is None:
        return 0
    value = float(m.group(1))
    scale = {"bytes": 1, "KiB": 1024, "MiB": 1024**2, "GiB": 1024**3}[m.group(2)]
    return int(value * scale)


def url_username(url: str) -> str | None:
    """User name embedded in a remote URL (``ssh://git@host/..`` or ``git@host:..``)."""
    if "://" in url:
        return urlsplit(url).username
    m = _SCP_URL_RE.match(url)
    return m.group("user") if m else None


def allowed_methods(url: str) -> frozenset[CredentialMethod] | None:
    """Credential methods a remote URL can use; None for local remotes that need none."""
    if "://" in url:
        scheme = urlsplit(url).scheme.lower()
        if scheme in ("http", "https"):
            return frozenset({CredentialMethod.USER_PASS})
        if scheme in ("ssh", "git+ssh", "ssh+git"):
            return frozenset({CredentialMethod.SSH_AGENT, CredentialMethod.SSH_KEY})
        return None
    # scp-like syntax (host:path) unless it is a local path.
    if _SCP_URL_RE.match(url) and not url.startswith(("/", ".", "~")) and "/" not in url.split(":", 1)[0]:
        return frozenset({CredentialMethod.SSH_AGENT, CredentialMethod.SSH_KEY})
    return None


def _stderr(exc: GitCommandError) -> str:
    return str(exc.stderr or exc.stdout or str(exc))


def is_auth_failure(exc: GitCommandError) -> bool:
    text = _stderr(exc).lower()
    return any(p in text for p in AUTH_FAILURE_PATTERNS)


def convert_git_error(exc: GitCommandError, operation: str) -> BackendError:
    """Map a GitPython command error onto the BackendError taxonomy by stderr."""
    stderr = _stderr(exc).strip()
    low = stderr.lower()
    msg = f"git {operation} failed: {stderr or exc}"

    if is_auth_failure(exc):
        return AuthenticationError(msg, cause=exc)
    if (
        "not a git repository" in low
        or "does not exist" in low
        or "unknown revision" in low
        or "did not match any file" in low
        or "does not appear to be a git repository" in low
        or "no such remote" in low
        or "couldn't find remote ref" in low
        or "bad revision" in low
        or "no such path" in low
    ):
        return NotFoundError(msg, cause=exc)
    if (
        "conflict" in low
        or "rejected" in low
        or "non-fast-forward" in low
        or "would be overwritten" in low
        or "nothing to commit" in low
        or "not possible to fast-forward" in low
        or "index.lock" in low
    ):
        return ConflictError(msg, cause=exc)
    if "permission denied" in low or "read-only file system" in low:
        return PermissionDeniedError(msg, cause=exc)
    if "bad object" in low or "corrupt" in low or "malformed" in low or "fatal: bad" in low:
        return MalformedDataError(msg, cause=exc)
    return BackendError(msg, cause=exc)
