"""Shared error types.

The goal is to make errors explicit and easy to handle at the consumer boundary.
Backend failures travel through the notification channel; only ``QueueFull``
(and programming errors) are raised synchronously from the engine API.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(eq=False)
class AppError(Exception):
    """Base error for engine-level failures."""

    message: str
    cause: Exception | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.cause is None:
            return self.message
        return f"{self.message} (cause: {self.cause})"


class ValidationError(AppError):
    """Invalid user input or configuration."""


class BackendError(AppError):
    """Operation-specific failure reported by the backend facade."""


class NotFoundError(BackendError):
    """Requested object (path, revision, remote) does not exist."""


class ConflictError(BackendError):
    """Operation rejected because of conflicting state (merge, rejected push)."""


class PermissionDeniedError(BackendError):
    """Filesystem or repository permission failure."""


class MalformedDataError(BackendError):
    """Backend returned or found data it could not parse."""


class AuthenticationError(BackendError):
    """Remote rejected the credentials offered by the backend."""


class QueueFull(AppError):
    """Dispatcher backpressure; the only error returned synchronously."""


class StaleResult(AppError):
    """A result was superseded by a newer generation (internal, never surfaced)."""


class AuthExhausted(AppError):
    """Every configured credential method was tried without success."""


class CancelledError(AppError):
    """Cooperative cancellation acknowledged by the backend."""


class InvalidTransition(AppError):
    """Remote operation state machine refused a transition."""


class UnknownOperationError(AppError):
    """Handle does not refer to a live remote operation."""
