"""Notification types and the channel that carries them to the consumer.

Worker threads never call into consumer state directly; they push immutable
notifications which the consumer polls on its own thread.
"""

from .channel import NotificationChannel
from .notifications import (
    BackendStateChanged,
    JobCompleted,
    JobFailed,
    Notification,
    RemoteOpProgress,
)

__all__ = [
    "NotificationChannel",
    "Notification",
    "JobCompleted",
    "JobFailed",
    "RemoteOpProgress",
    "BackendStateChanged",
]
