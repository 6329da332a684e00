"""Ordered credential resolution for remote operations.

Credential *storage* and prompting UI live outside the engine; this module only
walks a configured list of methods, produces one :class:`Credential` per
attempt and records what happened to each attempt.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import struct
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)

_OPENSSH_MAGIC = b"openssh-key-v1\x00"


class CredentialMethod(str, Enum):
    SSH_AGENT = "ssh_agent"
    SSH_KEY = "ssh_key"
    USER_PASS = "user_pass"


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class CredentialAttempt:
    method: CredentialMethod
    outcome: AttemptOutcome
    detail: str | None = None


@dataclass(frozen=True, slots=True)
class Credential:
    """What the backend hands to its transport for one authentication attempt."""

    method: CredentialMethod
    username: str | None = None
    key_path: Path | None = None
    passphrase: str | None = field(default=None, repr=False)
    password: str | None = field(default=None, repr=False)


UserPassPrompt = Callable[[str, str | None], "tuple[str, str] | None"]


@dataclass(frozen=True, slots=True)
class CredentialSpec:
    """One configured method. Secrets are optional; ``prompt`` covers interactive input."""

    method: CredentialMethod
    username: str | None = None
    key_path: Path | None = None
    passphrase: str | None = field(default=None, repr=False)
    password: str | None = field(default=None, repr=False)
    prompt: UserPassPrompt | None = field(default=None, compare=False, repr=False)


@dataclass(frozen=True, slots=True)
class CredentialConfig:
    methods: tuple[CredentialSpec, ...] = ()

    @classmethod
    def default(cls, *, home: Path | None = None) -> CredentialConfig:
        """ssh-agent first, then the usual key files in ~/.ssh."""
        ssh_dir = (home or Path.home()) / ".ssh"
        specs = [CredentialSpec(CredentialMethod.SSH_AGENT)]
        for name in ("id_ed25519", "id_ecdsa", "id_rsa"):
            specs.append(CredentialSpec(CredentialMethod.SSH_KEY, key_path=ssh_dir / name))
        return cls(methods=tuple(specs))

    @classmethod
    def of(cls, specs: Iterable[CredentialSpec]) -> CredentialConfig:
        return cls(methods=tuple(specs))


def ssh_key_is_encrypted(path: Path) -> bool:
    """Return True if the private key at *path* needs a passphrase.

    Understands the OpenSSH container (cipher name in the header) and legacy
    PEM / PKCS#8 markers. Unknown formats are reported as not encrypted and
    left for the transport to reject.
    """
    text = path.read_text(encoding="utf-8", errors="replace")
    if "Proc-Type: 4,ENCRYPTED" in text or "BEGIN ENCRYPTED PRIVATE KEY" in text:
        return True
    if "BEGIN OPENSSH PRIVATE KEY" not in text:
        return False

    body = "".join(
        line.strip() for line in text.splitlines() if line.strip() and not line.startswith("-----")
    )
    try:
        raw = base64.b64decode(body)
    except (binascii.Error, ValueError):
        return False
    if not raw.startswith(_OPENSSH_MAGIC):
        return False
    offset = len(_OPENSSH_MAGIC)
    if len(raw) < offset + 4:
        return False
    (cipher_len,) = struct.unpack(">I", raw[offset : offset + 4])
    cipher = raw[offset + 4 : offset + 4 + cipher_len]
    return cipher != b"none"


class CredentialResolver:
    """Walks a :class:`CredentialConfig` once per remote operation.

    Each configured method is offered at most once. The outcome of an offered
    credential is only known later: the backend asking again means the previous
    one failed, the transfer starting means it worked.
    """

    def __init__(self, config: CredentialConfig) -> None:
        self._specs = list(config.methods)
        self._next = 0
        self._pending: CredentialMethod | None = None
        self._attempts: list[CredentialAttempt] = []

    @property
    def attempts(self) -> list[CredentialAttempt]:
        return list(self._attempts)

    @property
    def exhausted(self) -> bool:
        return self._pending is None and self._next >= len(self._specs)

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def next_credential(
        self,
        url: str,
        username_from_url: str | None = None,
        allowed: frozenset[CredentialMethod] | None = None,
    ) -> Credential | None:
        """Return the next usable credential, or None when every method is used up."""
        self._settle(AttemptOutcome.FAILURE)
        while self._next < len(self._specs):
            spec = self._specs[self._next]
            self._next += 1
            if allowed is not None and spec.method not in allowed:
                self._record(spec.method, AttemptOutcome.SKIPPED, "not allowed by remote")
                continue
            cred, reason = _resolve(spec, url, username_from_url)
            if cred is None:
                self._record(spec.method, AttemptOutcome.SKIPPED, reason)
                continue
            self._pending = spec.method
            logger.debug("Offering %s credential for %s", spec.method.value, url)
            return cred
        return None

    def mark_success(self) -> None:
        self._settle(AttemptOutcome.SUCCESS)

    def mark_failure(self) -> None:
        self._settle(AttemptOutcome.FAILURE)

    def _settle(self, outcome: AttemptOutcome) -> None:
        if self._pending is None:
            return
        self._record(self._pending, outcome)
        self._pending = None

    def _record(self, method: CredentialMethod, outcome: AttemptOutcome, detail: str | None = None) -> None:
        self._attempts.append(CredentialAttempt(method=method, outcome=outcome, detail=detail))


def _resolve(
    spec: CredentialSpec, url: str, username_from_url: str | None
) -> tuple[Credential | None, str | None]:
    if spec.method is CredentialMethod.SSH_AGENT:
        if not os.environ.get("SSH_AUTH_SOCK"):
            return None, "no agent socket"
        return Credential(spec.method, username=username_from_url or spec.username or "git"), None

    if spec.method is CredentialMethod.SSH_KEY:
        if spec.key_path is None or not spec.key_path.is_file():
            return None, "key file missing"
        try:
            encrypted = ssh_key_is_encrypted(spec.key_path)
        except OSError as e:
            return None, f"key unreadable: {e}"
        if encrypted and not spec.passphrase:
            return None, "passphrase required"
        return (
            Credential(
                spec.method,
                username=username_from_url or spec.username or "git",
                key_path=spec.key_path,
                passphrase=spec.passphrase if encrypted else None,
            ),
            None,
        )

    username = spec.username or username_from_url
    if username and spec.password:
        return Credential(spec.method, username=username, password=spec.password), None
    if spec.prompt is not None:
        answer = spec.prompt(url, username)
        if answer:
            user, password = answer
            return Credential(spec.method, username=user, password=password), None
        return None, "prompt dismissed"
    return None, "no username/password"
