"""Glue between the git CLI transport and the engine's remote callbacks.

- :class:`ProgressBridge` turns GitPython ``RemoteProgress`` updates into
  :class:`TransferProgress` and doubles as the cancellation checkpoint.
- :func:`credential_environment` turns one :class:`Credential` into the
  environment git/ssh need to use exactly that credential without prompting
  on a terminal.

Secrets only ever travel through environment variables of the child process;
the askpass helper written to disk just echoes them back.
"""

from __future__ import annotations

import logging
import os
import shlex
import stat
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from git import RemoteProgress

from asyncrepo.core.remote.controller import RemoteCallbacks
from asyncrepo.core.remote.credentials import Credential, CredentialMethod
from asyncrepo.core.remote.state import TransferProgress
from asyncrepo.services.git_parsing import parse_size

logger = logging.getLogger(__name__)

ASKPASS_USERNAME_ENV = "ASYNCREPO_ASKPASS_USERNAME"
ASKPASS_SECRET_ENV = "ASYNCREPO_ASKPASS_SECRET"

_ASKPASS_SCRIPT = f"""#!/bin/sh
case "$1" in
  Username*|username*) printf '%s\\n' "${ASKPASS_USERNAME_ENV}" ;;
  *) printf '%s\\n' "${ASKPASS_SECRET_ENV}" ;;
esac
"""


def _as_int(value: Any) -> int:
    try:
        return int(float(value or 0))
    except (TypeError, ValueError):
        return 0


class ProgressBridge(RemoteProgress):
    """Forwards git's progress lines to ``callbacks.progress``.

    Once the callback asks to abort, further lines are ignored. The git
    process itself cannot be interrupted from here; the backend checks
    :attr:`aborted` when the command returns.
    """

    def __init__(self, callbacks: RemoteCallbacks) -> None:
        super().__init__()
        self._callbacks = callbacks
        self.aborted = False

    def update(self, op_code: int, cur_count: Any, max_count: Any = None, message: str = "") -> None:
        if self.aborted:
            return
        stage = op_code & self.OP_MASK
        cur = _as_int(cur_count)
        total = _as_int(max_count)
        if stage in (self.RECEIVING, self.WRITING):
            update = TransferProgress(
                received_objects=cur,
                total_objects=total,
                received_bytes=parse_size(message or ""),
            )
        elif stage == self.RESOLVING:
            update = TransferProgress(indexed_objects=cur, total_objects=total)
        else:
            # Counting/compressing: connection is up, no object counters yet.
            update = TransferProgress()
        if not self._callbacks.progress(update):
            logger.debug("Transfer abort requested by callback")
            self.aborted = True


def _ssh_command(*options: str) -> str:
    return " ".join(["ssh", *options])


@contextmanager
def credential_environment(credential: Credential | None) -> Iterator[dict[str, str]]:
    """Yield env vars for one git invocation using *credential*.

    Terminal prompts are always disabled. An askpass helper is only written
    when a secret has to be handed over, and removed afterwards.
    """
    env: dict[str, str] = {"GIT_TERMINAL_PROMPT": "0"}
    if credential is None:
        env["GIT_SSH_COMMAND"] = _ssh_command("-o", "BatchMode=yes")
        yield env
        return

    if credential.method is CredentialMethod.SSH_AGENT:
        env["GIT_SSH_COMMAND"] = _ssh_command("-o", "BatchMode=yes")
        yield env
        return

    if credential.method is CredentialMethod.SSH_KEY:
        key = shlex.quote(str(credential.key_path))
        if not credential.passphrase:
            env["GIT_SSH_COMMAND"] = _ssh_command(
                "-i", key, "-o", "IdentitiesOnly=yes", "-o", "BatchMode=yes"
            )
            yield env
            return
        with _askpass_helper() as helper:
            env["GIT_SSH_COMMAND"] = _ssh_command(
                "-i",
                key,
                "-o",
                "IdentitiesOnly=yes",
                "-o",
                "PasswordAuthentication=no",
                "-o",
                "KbdInteractiveAuthentication=no",
            )
            env["SSH_ASKPASS"] = str(helper)
            env["SSH_ASKPASS_REQUIRE"] = "force"
            env[ASKPASS_SECRET_ENV] = credential.passphrase
            yield env
        return

    with _askpass_helper() as helper:
        env["GIT_ASKPASS"] = str(helper)
        env[ASKPASS_USERNAME_ENV] = credential.username or ""
        env[ASKPASS_SECRET_ENV] = credential.password or ""
        # Stored credentials would shadow the one being tried.
        env["GIT_CONFIG_COUNT"] = "1"
        env["GIT_CONFIG_KEY_0"] = "credential.helper"
        env["GIT_CONFIG_VALUE_0"] = ""
        yield env


@contextmanager
def _askpass_helper() -> Iterator[Path]:
    with tempfile.TemporaryDirectory(prefix="asyncrepo-askpass-") as tmp:
        path = Path(tmp) / "askpass.sh"
        path.write_text(_ASKPASS_SCRIPT, encoding="utf-8")
        os.chmod(path, stat.S_IRWXU)
        yield path
