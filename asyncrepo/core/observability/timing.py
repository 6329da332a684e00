"""Timing helpers for lightweight observability."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager


@contextmanager
def time_block(
    name: str,
    *,
    logger: logging.Logger | None = None,
    level: int = logging.DEBUG,
    slow_ms: float | None = None,
    clock: Callable[[], float] = time.perf_counter,
) -> Iterator[None]:
    """Log how long the block took.

    Blocks slower than ``slow_ms`` are logged at WARNING regardless of ``level``.
    """
    log = logger or logging.getLogger(__name__)
    start = clock()
    try:
        yield
    finally:
        dur_ms = (clock() - start) * 1000
        if slow_ms is not None and dur_ms >= slow_ms:
            log.warning("%s slow: took %.1fms", name, dur_ms, extra={"event": "timing"})
        else:
            log.log(level, "%s took %.1fms", name, dur_ms, extra={"event": "timing"})
