"""Error taxonomy shared by the provisioning and teardown orchestrators."""
from __future__ import annotations


class PeerTubeCtlError(RuntimeError):
    """Base class for fatal peertubectl failures."""


class UserInputError(PeerTubeCtlError):
    """Raised when a required operator input is missing or malformed."""


class ResourceConflictError(PeerTubeCtlError):
    """Raised when a conflicting resource survives forced remediation."""


class ExternalLookupFailure(PeerTubeCtlError):
    """Raised when an upstream lookup fails and no fallback resolves it."""


class ValidationFailure(PeerTubeCtlError):
    """Raised when a generated nginx configuration fails syntax validation."""

    def __init__(self, message: str, *, path: object | None = None) -> None:
        super().__init__(message)
        self.path = path


class ProvisioningError(PeerTubeCtlError):
    """Raised when a provisioning step fails for any other reason."""


class BestEffortFailure(PeerTubeCtlError):
    """Raised by a teardown step; always downgraded to a warning."""


__all__ = [
    "BestEffortFailure",
    "ExternalLookupFailure",
    "PeerTubeCtlError",
    "ProvisioningError",
    "ResourceConflictError",
    "UserInputError",
    "ValidationFailure",
]
