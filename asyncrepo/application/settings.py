"""Typed settings loaded from YAML + environment.

The config file is optional. Whatever is found is normalized through
dataclass models:

- missing keys are filled with defaults
- basic type coercion is applied (e.g. "4" -> 4)
- unknown keys are ignored (forward compatibility)
- out-of-range values fall back to defaults / are clamped

Secrets are never stored in the file itself: credential entries name the
environment variables holding a passphrase or password.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from asyncrepo.config import (
    CONFIG_FILE_NAME,
    DEFAULT_CACHE_MAX_ENTRIES_PER_KIND,
    DEFAULT_DEBOUNCE_MS,
    DEFAULT_LOG_MESSAGE_LIMIT,
    DEFAULT_PROGRESS_MAX_RATE_HZ,
    DEFAULT_READ_QUEUE_SIZE,
    DEFAULT_READ_WORKERS,
    DEFAULT_TICK_INTERVAL_S,
    DEFAULT_WRITE_QUEUE_SIZE,
    MAX_READ_WORKERS_CAP,
)
from asyncrepo.core.errors import ValidationError
from asyncrepo.core.paths import get_app_config_dir
from asyncrepo.core.remote.credentials import (
    CredentialConfig,
    CredentialMethod,
    CredentialSpec,
    UserPassPrompt,
)

logger = logging.getLogger(__name__)

ENV_PREFIX = "ASYNCREPO_"
SCHEMA_VERSION = 1


def _as_int(value: Any, default: int) -> int:
    try:
        if isinstance(value, bool):
            return default
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float) -> float:
    try:
        if isinstance(value, bool):
            return default
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_opt_str(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (str, int, float)):
        s = str(value).strip()
        return s or None
    return None


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


@dataclass(slots=True)
class EngineSettings:
    read_workers: int = DEFAULT_READ_WORKERS
    read_queue_size: int = DEFAULT_READ_QUEUE_SIZE
    write_queue_size: int = DEFAULT_WRITE_QUEUE_SIZE
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    progress_max_rate_hz: float = DEFAULT_PROGRESS_MAX_RATE_HZ
    cache_max_entries_per_kind: int = DEFAULT_CACHE_MAX_ENTRIES_PER_KIND
    log_message_limit: int = DEFAULT_LOG_MESSAGE_LIMIT
    tick_interval_s: float = DEFAULT_TICK_INTERVAL_S

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> EngineSettings:
        m = _mapping(data)
        workers = _as_int(m.get("read_workers"), DEFAULT_READ_WORKERS)
        return cls(
            read_workers=int(_clamp(workers, 1, MAX_READ_WORKERS_CAP)),
            read_queue_size=max(1, _as_int(m.get("read_queue_size"), DEFAULT_READ_QUEUE_SIZE)),
            write_queue_size=max(1, _as_int(m.get("write_queue_size"), DEFAULT_WRITE_QUEUE_SIZE)),
            debounce_ms=max(0, _as_int(m.get("debounce_ms"), DEFAULT_DEBOUNCE_MS)),
            progress_max_rate_hz=max(
                0.0, _as_float(m.get("progress_max_rate_hz"), DEFAULT_PROGRESS_MAX_RATE_HZ)
            ),
            cache_max_entries_per_kind=max(
                0, _as_int(m.get("cache_max_entries_per_kind"), DEFAULT_CACHE_MAX_ENTRIES_PER_KIND)
            ),
            log_message_limit=max(1, _as_int(m.get("log_message_limit"), DEFAULT_LOG_MESSAGE_LIMIT)),
            tick_interval_s=max(0.1, _as_float(m.get("tick_interval_s"), DEFAULT_TICK_INTERVAL_S)),
        )


@dataclass(slots=True)
class CredentialEntry:
    """One configured credential method; secrets are looked up by env var name."""

    method: CredentialMethod
    username: str | None = None
    key_path: str | None = None
    passphrase_env: str | None = None
    password_env: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CredentialEntry | None:
        m = _mapping(data)
        try:
            method = CredentialMethod(str(m.get("method", "")).strip().lower())
        except ValueError:
            logger.warning("Ignoring credential entry with unknown method %r", m.get("method"))
            return None
        return cls(
            method=method,
            username=_as_opt_str(m.get("username")),
            key_path=_as_opt_str(m.get("key_path")),
            passphrase_env=_as_opt_str(m.get("passphrase_env")),
            password_env=_as_opt_str(m.get("password_env")),
        )

    def to_spec(self, *, env: Mapping[str, str], prompt: UserPassPrompt | None = None) -> CredentialSpec:
        key_path = Path(self.key_path).expanduser() if self.key_path else None
        return CredentialSpec(
            method=self.method,
            username=self.username,
            key_path=key_path,
            passphrase=env.get(self.passphrase_env) if self.passphrase_env else None,
            password=env.get(self.password_env) if self.password_env else None,
            prompt=prompt if self.method is CredentialMethod.USER_PASS else None,
        )


@dataclass(slots=True)
class Settings:
    schema_version: int = SCHEMA_VERSION
    engine: EngineSettings = field(default_factory=EngineSettings)
    credentials: list[CredentialEntry] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Settings:
        m = _mapping(data)
        raw_creds = m.get("credentials")
        creds: list[CredentialEntry] = []
        if isinstance(raw_creds, list):
            for item in raw_creds:
                entry = CredentialEntry.from_dict(item)
                if entry is not None:
                    creds.append(entry)
        return cls(
            schema_version=_as_int(m.get("schema_version"), SCHEMA_VERSION),
            engine=EngineSettings.from_dict(_mapping(m.get("engine"))),
            credentials=creds,
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["credentials"] = [
            {k: (v.value if k == "method" else v) for k, v in c.items() if v is not None}
            for c in data["credentials"]
        ]
        return data

    def credential_config(
        self,
        *,
        prompt: UserPassPrompt | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CredentialConfig:
        """Ordered credential methods; the built-in default order when none are configured."""
        if not self.credentials:
            config = CredentialConfig.default()
            if prompt is None:
                return config
            return CredentialConfig.of(
                [*config.methods, CredentialSpec(CredentialMethod.USER_PASS, prompt=prompt)]
            )
        env = os.environ if env is None else env
        return CredentialConfig.of(c.to_spec(env=env, prompt=prompt) for c in self.credentials)


def default_settings_path() -> Path:
    return get_app_config_dir() / CONFIG_FILE_NAME


def apply_env_overrides(settings: Settings, env: Mapping[str, str] | None = None) -> Settings:
    """Apply ``ASYNCREPO_<ENGINE FIELD>`` overrides (e.g. ASYNCREPO_READ_WORKERS=2)."""
    env = os.environ if env is None else env
    current = asdict(settings.engine)
    changed = False
    for f in fields(EngineSettings):
        raw = env.get(ENV_PREFIX + f.name.upper())
        if raw is not None and raw.strip():
            current[f.name] = raw.strip()
            changed = True
    if changed:
        settings.engine = EngineSettings.from_dict(current)
    return settings


def load_settings(
    path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
    strict: bool = False,
) -> Settings:
    """Load settings from YAML, falling back to defaults.

    An explicit *path* that does not exist, or a file that is not valid YAML,
    raises :class:`ValidationError` when ``strict`` is set; otherwise it is
    logged and defaults are used.
    """
    p = path or default_settings_path()
    data: Any = {}
    if p.exists():
        try:
            with open(p, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            if strict:
                raise ValidationError(f"invalid config file {p}", cause=e) from e
            logger.warning("Ignoring invalid config file %s: %s", p, e)
            data = {}
    elif path is not None and strict:
        raise ValidationError(f"config file not found: {p}")

    if not isinstance(data, Mapping):
        if strict:
            raise ValidationError(f"config file {p} must contain a mapping")
        logger.warning("Ignoring config file %s: top level is not a mapping", p)
        data = {}
    return apply_env_overrides(Settings.from_dict(data), env)


def save_settings(settings: Settings, path: Path | None = None) -> Path:
    p = path or default_settings_path()
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w", encoding="utf-8") as f:
        yaml.safe_dump(settings.to_dict(), f, sort_keys=False)
    return p
