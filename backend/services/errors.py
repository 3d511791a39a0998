"""
Service-layer exceptions for the order & payment pipeline.

Routes translate these into structured HTTP errors
({error_code, message, request_id}); services never build HTTP responses.
"""
from typing import Optional, Dict, Any


class OrchestrationError(Exception):
    """Base exception carrying an HTTP status and a stable error code."""
    status_code = 500
    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None, **extra):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.extra: Dict[str, Any] = extra

    def to_detail(self, request_id: Optional[str] = None) -> Dict[str, Any]:
        detail = {"error_code": self.error_code, "message": self.message, **self.extra}
        if request_id:
            detail["request_id"] = request_id
        return detail


class ValidationFailed(OrchestrationError):
    """Bad caller input. Rejected before any external side effect."""
    status_code = 400
    error_code = "VALIDATION_FAILED"


class NotFound(OrchestrationError):
    status_code = 404
    error_code = "NOT_FOUND"


class StepConflict(OrchestrationError):
    """Wizard step replayed, skipped, or submitted with a stale version."""
    status_code = 409
    error_code = "STEP_CONFLICT"


class ConfigurationError(OrchestrationError):
    """Server misconfigured (missing credentials, bucket, team id)."""
    status_code = 500
    error_code = "SERVER_MISCONFIGURED"


class UpstreamError(OrchestrationError):
    """Collaborator failure (Stripe, storage, directory). Message is caller-safe."""
    status_code = 502
    error_code = "UPSTREAM_FAILED"


class PersistenceError(OrchestrationError):
    """Document database write failed."""
    status_code = 503
    error_code = "PERSISTENCE_FAILED"
