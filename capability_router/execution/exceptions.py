from __future__ import annotations


class RouterError(RuntimeError):
    """Base class for routing-core failures that are raised rather than reported."""


class RequestCancelledError(RouterError):
    """Raised when the caller withdrew interest in a request while a call was in flight."""

    def __init__(self, message: str = "Request cancelled", *, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class CollaboratorContractError(RouterError):
    """Raised when a collaborator returns something outside its contract."""


class UnknownCapabilityError(RouterError):
    """Raised when no client is registered for an API category."""
