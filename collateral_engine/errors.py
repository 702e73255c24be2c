"""Error taxonomy raised by the collateral engine.

``retryable`` tells callers (and the API layer) whether repeating the same
request may succeed; only collaborator failures are retryable.
"""
from __future__ import annotations

__all__ = [
    "CollateralError",
    "NotFound",
    "ValidationError",
    "InvalidInput",
    "StateConflict",
    "CollaboratorUnavailable",
]


class CollateralError(Exception):
    retryable = False


class NotFound(CollateralError):
    def __init__(self, kind: str, ident: str):
        super().__init__(f"{kind} not found: {ident}")
        self.kind = kind
        self.ident = ident


class ValidationError(CollateralError):
    """Malformed or out-of-range input."""


class InvalidInput(ValidationError):
    """Raised by the pure valuation math for non-positive inputs."""


class StateConflict(CollateralError):
    """Requested transition is not allowed from the record's current state."""


class CollaboratorUnavailable(CollateralError):
    """A store or external provider timed out or failed."""

    retryable = True

    def __init__(self, collaborator: str, detail: str = "unavailable"):
        super().__init__(f"{collaborator}: {detail}")
        self.collaborator = collaborator
        self.detail = detail
