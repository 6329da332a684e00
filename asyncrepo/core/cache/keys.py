from __future__ import annotations

import json
from dataclasses import asdict, dataclass, is_dataclass
from datetime import datetime
from enum import Enum
from pathlib import PurePath
from typing import Any, cast

from asyncrepo.core.kinds import JobKind


def _safe_serialize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, PurePath):
        return value.as_posix()
    if isinstance(value, datetime):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        return {k: _safe_serialize(v) for k, v in asdict(cast(Any, value)).items()}
    if isinstance(value, dict):
        return {str(k): _safe_serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, frozenset, set)):
        items = [_safe_serialize(v) for v in value]
        if isinstance(value, (frozenset, set)):
            items.sort(key=repr)
        return items
    # Fallback: short repr
    s = repr(value)
    return s[:1000]


def serialize_params(params: Any) -> str:
    """Stable text form of job parameters.

    Parameter objects that carry non-data members (callbacks, handles) expose
    ``cache_identity()`` to pick the fields that identify the operation.
    """
    identity = getattr(params, "cache_identity", None)
    if callable(identity):
        params = identity()
    return json.dumps(_safe_serialize(params), sort_keys=True, ensure_ascii=False)


@dataclass(frozen=True, slots=True)
class CacheKey:
    kind: JobKind
    params: str = "null"

    @classmethod
    def for_request(cls, kind: JobKind, params: Any = None) -> CacheKey:
        return cls(kind=kind, params=serialize_params(params))

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.params}"
