from __future__ import annotations

import logging

import pytest

from asyncrepo.core.observability.timing import time_block


def _clock(*values: float):
    it = iter(values)
    return lambda: next(it)


def test_fast_block_logs_at_requested_level(caplog: pytest.LogCaptureFixture) -> None:
    log = logging.getLogger("asyncrepo.test.timing")
    with caplog.at_level(logging.DEBUG, logger=log.name):
        with time_block("git.status", logger=log, slow_ms=100, clock=_clock(1.0, 1.05)):
            pass

    (record,) = caplog.records
    assert record.levelno == logging.DEBUG
    assert record.getMessage() == "git.status took 50.0ms"
    assert record.event == "timing"


def test_slow_block_escalates_to_warning_even_on_error(caplog: pytest.LogCaptureFixture) -> None:
    log = logging.getLogger("asyncrepo.test.timing")
    with caplog.at_level(logging.DEBUG, logger=log.name):
        with pytest.raises(RuntimeError):
            with time_block("git.fetch", logger=log, slow_ms=100, clock=_clock(0.0, 2.5)):
                raise RuntimeError("boom")

    (record,) = caplog.records
    assert record.levelno == logging.WARNING
    assert record.getMessage() == "git.fetch slow: took 2500.0ms"
