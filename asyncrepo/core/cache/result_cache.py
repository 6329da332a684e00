"""Last-known-good payload cache with explicit invalidation.

Validity is tracked with tokens, not with job generations:

- every key has its own counter, bumped by :meth:`ResultCache.invalidate`;
- every kind has an epoch, bumped by :meth:`ResultCache.invalidate_kind`;
- the cache has a global epoch, bumped by :meth:`ResultCache.invalidate_all`.

The token of a key is the triple of those three numbers. A job captures the
token when it is dispatched and stores its payload stamped with *that* token,
so a payload computed before an invalidation can never look fresh after it.

Locks are striped per job kind; unrelated kinds never contend.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Generic, TypeVar

from asyncrepo.config import DEFAULT_CACHE_MAX_ENTRIES_PER_KIND
from asyncrepo.core.cache.keys import CacheKey
from asyncrepo.core.kinds import JobKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

ValidityToken = tuple[int, int, int]


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[T]):
    key: CacheKey
    payload: T
    token: ValidityToken
    generation: int


@dataclass(frozen=True, slots=True)
class CacheStats:
    hits: int
    misses: int
    entries: int
    evictions: int


@dataclass(slots=True)
class _Stripe:
    lock: Lock = field(default_factory=Lock)
    epoch: int = 0
    tokens: dict[CacheKey, int] = field(default_factory=dict)
    entries: OrderedDict[CacheKey, CacheEntry[Any]] = field(default_factory=OrderedDict)
    hits: int = 0
    misses: int = 0
    evictions: int = 0


class ResultCache:
    def __init__(self, *, max_entries_per_kind: int = DEFAULT_CACHE_MAX_ENTRIES_PER_KIND) -> None:
        self._max_entries = int(max_entries_per_kind)
        self._epoch = 0
        self._epoch_lock = Lock()
        self._stripes: dict[JobKind, _Stripe] = {kind: _Stripe() for kind in JobKind}

    def _token_locked(self, stripe: _Stripe, key: CacheKey) -> ValidityToken:
        return (self._epoch, stripe.epoch, stripe.tokens.get(key, 0))

    def token(self, key: CacheKey) -> ValidityToken:
        """Current validity token of *key*; captured by jobs at dispatch."""
        stripe = self._stripes[key.kind]
        with stripe.lock:
            return self._token_locked(stripe, key)

    def put(self, key: CacheKey, payload: Any, *, token: ValidityToken, generation: int) -> bool:
        """Store *payload* stamped with the dispatch-time *token*.

        Refuses (returns False) to replace an entry produced by a higher
        generation.
        """
        stripe = self._stripes[key.kind]
        with stripe.lock:
            existing = stripe.entries.get(key)
            if existing is not None and existing.generation > generation:
                logger.debug(
                    "Refusing to overwrite %s gen %d with gen %d", key, existing.generation, generation
                )
                return False
            stripe.entries[key] = CacheEntry(key=key, payload=payload, token=token, generation=generation)
            stripe.entries.move_to_end(key)
            if self._max_entries > 0:
                while len(stripe.entries) > self._max_entries:
                    evicted, _ = stripe.entries.popitem(last=False)
                    stripe.evictions += 1
                    logger.debug("Evicted %s", evicted)
            return True

    def entry(self, key: CacheKey) -> CacheEntry[Any] | None:
        """Valid entry for *key*, or None if missing or invalidated since dispatch."""
        stripe = self._stripes[key.kind]
        with stripe.lock:
            e = stripe.entries.get(key)
            if e is None or e.token != self._token_locked(stripe, key):
                stripe.misses += 1
                return None
            stripe.hits += 1
            stripe.entries.move_to_end(key)
            return e

    def get(self, key: CacheKey) -> Any | None:
        """Valid payload for *key*.

        A stored payload of None is indistinguishable from a miss here; use
        :meth:`entry` when that matters.
        """
        e = self.entry(key)
        return None if e is None else e.payload

    def last_known(self, key: CacheKey) -> CacheEntry[Any] | None:
        """Latest stored entry regardless of validity (for display while refreshing)."""
        stripe = self._stripes[key.kind]
        with stripe.lock:
            return stripe.entries.get(key)

    def is_valid(self, key: CacheKey) -> bool:
        stripe = self._stripes[key.kind]
        with stripe.lock:
            e = stripe.entries.get(key)
            return e is not None and e.token == self._token_locked(stripe, key)

    def invalidate(self, key: CacheKey) -> None:
        stripe = self._stripes[key.kind]
        with stripe.lock:
            stripe.tokens[key] = stripe.tokens.get(key, 0) + 1
        logger.debug("Invalidated %s", key)

    def invalidate_kind(self, kind: JobKind) -> None:
        stripe = self._stripes[kind]
        with stripe.lock:
            stripe.epoch += 1
        logger.debug("Invalidated kind %s", kind.value)

    def invalidate_all(self) -> None:
        with self._epoch_lock:
            self._epoch += 1
        logger.debug("Invalidated all cache keys (epoch %d)", self._epoch)

    def clear(self) -> None:
        """Drop stored payloads. Tokens are kept so in-flight jobs stay stale."""
        for stripe in self._stripes.values():
            with stripe.lock:
                stripe.entries.clear()

    def stats(self, kind: JobKind | None = None) -> CacheStats:
        stripes = [self._stripes[kind]] if kind is not None else list(self._stripes.values())
        hits = misses = entries = evictions = 0
        for stripe in stripes:
            with stripe.lock:
                hits += stripe.hits
                misses += stripe.misses
                entries += len(stripe.entries)
                evictions += stripe.evictions
        return CacheStats(hits=hits, misses=misses, entries=entries, evictions=evictions)
