"""
Pipeline Errors
Exceptions raised while verifying and applying webhook events.
Asset transfer errors live with the worker exceptions in app.workers.base.
"""

from typing import Optional


class PipelineError(Exception):
    """Base exception for webhook pipeline errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.details = details or {}


class VerificationError(PipelineError):
    """Signature did not match. Never retried."""


class MalformedPayloadError(PipelineError):
    """Signed body that does not match the provider's schema."""


class UnknownEntityError(PipelineError):
    """Event refers to a job or payment we have no record of (yet)."""


class InvalidTransitionError(PipelineError):
    """Requested operation is not allowed from the entity's current state."""


class StateIntegrityViolation(PipelineError):
    """
    Event contradicts an invariant (backward move, refund above the
    captured amount, refund regression). Recorded, never applied.
    """

    def __init__(
        self,
        message: str,
        entity_type: str,
        entity_id: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details)
        self.entity_type = entity_type
        self.entity_id = entity_id


__all__ = [
    "PipelineError",
    "VerificationError",
    "MalformedPayloadError",
    "UnknownEntityError",
    "InvalidTransitionError",
    "StateIntegrityViolation",
]
