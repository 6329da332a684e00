"""Remote operation model: phases, credentials and progress throttling.

The controller itself lives in :mod:`asyncrepo.core.remote.controller`.
"""

from .credentials import (
    AttemptOutcome,
    Credential,
    CredentialAttempt,
    CredentialConfig,
    CredentialMethod,
    CredentialResolver,
    CredentialSpec,
)
from .progress import ProgressThrottle
from .state import (
    FailureReason,
    OperationHandle,
    RemoteOperationState,
    RemoteOpSnapshot,
    RemotePhase,
    RemoteTarget,
    TransferProgress,
)

__all__ = [
    "AttemptOutcome",
    "Credential",
    "CredentialAttempt",
    "CredentialConfig",
    "CredentialMethod",
    "CredentialResolver",
    "CredentialSpec",
    "FailureReason",
    "OperationHandle",
    "ProgressThrottle",
    "RemoteOperationState",
    "RemoteOpSnapshot",
    "RemotePhase",
    "RemoteTarget",
    "TransferProgress",
]
