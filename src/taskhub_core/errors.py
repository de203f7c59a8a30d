"""Domain error taxonomy.

Every error carries the HTTP status it maps to at the API edge. Validation
and authorization errors are raised before any mutation; PartialFailureError
is the only error raised after a primary write has been committed.
"""
from typing import Any, Optional


class TaskHubError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[list[Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or []


class ValidationError(TaskHubError):
    """Malformed or missing input."""

    status_code = 400


class AuthenticationError(TaskHubError):
    """Missing, invalid or expired credential."""

    status_code = 401


class AuthorizationError(TaskHubError):
    """Authenticated, but the principal may not perform the operation."""

    status_code = 403


class NotFoundError(TaskHubError):
    """Entity missing, or soft-deleted (itself or its owning project)."""

    status_code = 404


class ConflictError(TaskHubError):
    """Duplicate membership or duplicate email."""

    status_code = 400


class ConsistencyError(TaskHubError):
    """Invalid date range or cross-entity reference violation."""

    status_code = 400


class PartialFailureError(TaskHubError):
    """A cascade step failed after the primary mutation was committed.

    The primary entity state has already changed. When `retryable` is set,
    re-issuing the same operation re-runs the idempotent cascade.
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        entity_type: str,
        entity_id: Any,
        failed_step: str,
        retryable: bool = True,
    ):
        super().__init__(message, details=[{"step": failed_step, "retryable": retryable}])
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.failed_step = failed_step
        self.retryable = retryable


class ExternalServiceError(TaskHubError):
    """AI or OAuth provider failure."""

    status_code = 500
