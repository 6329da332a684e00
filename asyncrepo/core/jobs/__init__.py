"""Background jobs infrastructure.

Provides a small, thread-based dispatcher and per-kind job slots so callers
(a render loop) never block on backend I/O.
"""

from .dispatcher import Dispatcher, JobOutcome, WorkItem
from .job_slot import JobRequest, JobResult, JobSlot, SlotStats

__all__ = [
    "Dispatcher",
    "JobOutcome",
    "JobRequest",
    "JobResult",
    "JobSlot",
    "SlotStats",
    "WorkItem",
]
