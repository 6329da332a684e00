"""Headless command-line front end.

``status`` runs a tick-based loop: every tick invalidates the cache and
re-spawns status/log/branches, printing summaries as completions arrive.
``fetch``/``push``/``pull`` start a remote operation and print progress
until it reaches a terminal phase; Ctrl-C requests cancellation.
"""

from __future__ import annotations

import argparse
import getpass
import logging
import os
import sys
import time
from pathlib import Path
from typing import TextIO

from asyncrepo.application.container import Container
from asyncrepo.application.engine import RepoEngine
from asyncrepo.application.ports.backend import LogParams, RepoPath
from asyncrepo.application.settings import Settings
from asyncrepo.config import APP_NAME, LOG_FILE_NAME
from asyncrepo.core.errors import AppError, QueueFull
from asyncrepo.core.events import (
    BackendStateChanged,
    JobCompleted,
    JobFailed,
    Notification,
    RemoteOpProgress,
)
from asyncrepo.core.kinds import JobKind
from asyncrepo.core.observability.logging_config import setup_logging
from asyncrepo.core.paths import get_app_cache_dir
from asyncrepo.core.remote.state import OperationHandle, RemotePhase, RemoteTarget
from asyncrepo.core.version import get_version_string

logger = logging.getLogger(__name__)

_REMOTE_COMMANDS = {"fetch": JobKind.FETCH, "push": JobKind.PUSH, "pull": JobKind.PULL}
_POLL_S = 0.1
_REFRESH_KINDS = (JobKind.STATUS, JobKind.LOG, JobKind.BRANCHES)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Non-blocking git status and remote operations.",
    )
    parser.add_argument("--version", action="version", version=f"{APP_NAME} {get_version_string()}")
    parser.add_argument(
        "-d",
        "--directory",
        default=os.environ.get("GIT_DIR"),
        help="Set the git directory [env: GIT_DIR]",
    )
    parser.add_argument(
        "-w",
        "--workdir",
        default=os.environ.get("GIT_WORK_TREE"),
        help="Set the working directory [env: GIT_WORK_TREE]",
    )
    parser.add_argument(
        "-l",
        "--logging",
        action="store_true",
        help="Store logging output into a file (in the cache directory by default)",
    )
    parser.add_argument(
        "--logfile",
        type=Path,
        help="Store logging output into the specified file (implies --logging)",
    )
    parser.add_argument("-c", "--config", type=Path, help="YAML config file")
    parser.add_argument(
        "command",
        nargs="?",
        default="status",
        choices=["status", *_REMOTE_COMMANDS],
    )
    parser.add_argument("--remote", default="origin", help="Remote name for fetch/push/pull")
    parser.add_argument("--branch", help="Branch / refspec for fetch/push/pull")
    parser.add_argument("--force", action="store_true", help="Force push")
    parser.add_argument(
        "--ticks",
        type=int,
        default=1,
        help="Status refresh rounds before exiting (0 = until interrupted)",
    )
    return parser


def _configure_logging(args: argparse.Namespace) -> None:
    if args.logging or args.logfile is not None:
        log_file = args.logfile or get_app_cache_dir() / LOG_FILE_NAME
        path = setup_logging(level=os.getenv("LOG_LEVEL", "DEBUG"), log_file=log_file, stream=False)
        if path is not None:
            print(f"Logging enabled. Log written to: {path}")
    else:
        setup_logging(level=os.getenv("LOG_LEVEL", "WARNING"))


def _prompt_user_pass(url: str, username: str | None) -> tuple[str, str] | None:
    if not sys.stdin.isatty():
        return None
    try:
        user = username or input(f"Username for {url}: ").strip()
        password = getpass.getpass(f"Password for {user}@{url}: ")
    except (EOFError, KeyboardInterrupt):
        return None
    if not user:
        return None
    return user, password


def _spawn_refresh(engine: RepoEngine, settings: Settings) -> None:
    log_params = LogParams(message_limit=settings.engine.log_message_limit)
    for kind in _REFRESH_KINDS:
        params = log_params if kind is JobKind.LOG else None
        try:
            engine.spawn(kind, params)
        except QueueFull:
            logger.warning("Skipping %s refresh: queue full", kind.value)


def _print_completion(engine: RepoEngine, kind: JobKind, out: TextIO) -> None:
    last = engine.last_result(kind)
    if last is None:
        return
    payload, _gen = last
    if kind is JobKind.STATUS:
        where = payload.branch or "(detached)"
        if payload.upstream:
            where += f" -> {payload.upstream} [+{payload.ahead}/-{payload.behind}]"
        print(f"branch {where}", file=out)
        for item in payload.staged:
            print(f"  staged    {item.status.value:<10} {item.path}", file=out)
        for item in payload.unstaged:
            print(f"  unstaged  {item.status.value:<10} {item.path}", file=out)
        if payload.is_clean:
            print("  working tree clean", file=out)
    elif kind is JobKind.LOG:
        for c in payload[:10]:
            print(f"{c.short_id} {c.author:<16.16} {c.message}", file=out)
    elif kind is JobKind.BRANCHES:
        local = [b.name for b in payload if not b.is_remote]
        print(f"{len(local)} local branch(es): {', '.join(local)}", file=out)


def _handle_status_message(engine: RepoEngine, msg: Notification | None, out: TextIO) -> bool:
    """Print one notification; True if it reports a failure."""
    if isinstance(msg, JobCompleted):
        _print_completion(engine, msg.kind, out)
    elif isinstance(msg, JobFailed):
        print(f"{msg.kind.value} failed: {msg.error}", file=out)
        return True
    elif isinstance(msg, BackendStateChanged):
        logger.debug("Backend state changed (%s)", msg.kind)
    return False


def run_status(engine: RepoEngine, settings: Settings, *, ticks: int, out: TextIO = sys.stdout) -> int:
    interval = settings.engine.tick_interval_s
    rounds = 0
    failed = False
    try:
        while ticks <= 0 or rounds < ticks:
            rounds += 1
            if rounds > 1:
                engine.invalidate()
            _spawn_refresh(engine, settings)
            deadline = time.monotonic() + interval
            while time.monotonic() < deadline:
                msg = engine.recv_notification(timeout=_POLL_S)
                failed |= _handle_status_message(engine, msg, out)
                if ticks > 0 and rounds >= ticks and not any(
                    engine.is_pending(k) for k in _REFRESH_KINDS
                ):
                    break
            # Completions are queued before their slot stops being pending.
            for msg in engine.drain_notifications():
                failed |= _handle_status_message(engine, msg, out)
    except KeyboardInterrupt:
        return 130
    return 1 if failed else 0


def run_remote(
    engine: RepoEngine,
    kind: JobKind,
    target: RemoteTarget,
    settings: Settings,
    *,
    out: TextIO = sys.stdout,
) -> int:
    try:
        handle = engine.start_remote_op(
            kind, target, settings.credential_config(prompt=_prompt_user_pass)
        )
    except QueueFull:
        print(f"{kind.value}: too many queued operations", file=out)
        return 1

    while True:
        try:
            msg = engine.recv_notification(timeout=_POLL_S)
        except KeyboardInterrupt:
            if engine.cancel(handle):
                print(f"{kind.value}: cancelling...", file=out)
            continue
        _handle_remote_message(handle, msg, out)
        snap = engine.state(handle)
        if snap.phase.is_terminal and not engine.is_pending(kind):
            for msg in engine.drain_notifications():
                _handle_remote_message(handle, msg, out)
            return _report_remote(handle, snap.phase, snap.error, out)


def _handle_remote_message(handle: OperationHandle, msg: Notification | None, out: TextIO) -> None:
    if isinstance(msg, RemoteOpProgress) and msg.op_id == handle.op_id:
        _print_progress(msg, out)


def _print_progress(msg: RemoteOpProgress, out: TextIO) -> None:
    p = msg.progress
    if msg.phase is RemotePhase.TRANSFERRING and p.total_objects:
        print(
            f"{msg.kind.value}: {p.received_objects}/{p.total_objects} objects"
            f" ({p.fraction:.0%}), {p.received_bytes} bytes",
            file=out,
        )
    else:
        print(f"{msg.kind.value}: {msg.phase.value}", file=out)


def _report_remote(handle: OperationHandle, phase: RemotePhase, error: str | None, out: TextIO) -> int:
    if phase is RemotePhase.COMPLETED:
        print(f"{handle.kind.value}: done", file=out)
        return 0
    if phase is RemotePhase.CANCELLED:
        print(f"{handle.kind.value}: cancelled", file=out)
        return 130
    print(f"{handle.kind.value}: failed: {error}", file=out)
    return 1


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args)

    container = Container(RepoPath.from_args(args.directory, args.workdir), config_path=args.config)
    try:
        settings = container.settings
        engine = container.engine
        if args.command in _REMOTE_COMMANDS:
            target = RemoteTarget(remote=args.remote, branch=args.branch, force=args.force)
            return run_remote(engine, _REMOTE_COMMANDS[args.command], target, settings)
        return run_status(engine, settings, ticks=args.ticks)
    except AppError as e:
        logger.error("%s", e)
        print(f"error: {e}", file=sys.stderr)
        return 2
    finally:
        container.close()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
