from .cancellation import CancellationToken
from .exceptions import (
    CollaboratorContractError,
    RequestCancelledError,
    RouterError,
    UnknownCapabilityError,
)
from .slot import ExecutionSlot, Work

__all__ = [
    "CancellationToken",
    "CollaboratorContractError",
    "ExecutionSlot",
    "RequestCancelledError",
    "RouterError",
    "UnknownCapabilityError",
    "Work",
]
