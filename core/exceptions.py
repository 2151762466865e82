"""
Application error hierarchy.

Every domain error carries a human-readable message, a stable
``error_code`` clients can switch on, optional ``details`` and the HTTP
status a view answers with when the error reaches the API:

    BaseApplicationError          400  APPLICATION_ERROR
    ├── ValidationError           400  VALIDATION_ERROR
    ├── NotFoundError             404  NOT_FOUND
    ├── PermissionDeniedError     403  PERMISSION_DENIED
    ├── ConflictError             409  CONFLICT
    └── ExternalServiceError      502  EXTERNAL_SERVICE_ERROR

Apps subclass these and override ``default_error_code`` / ``http_status``
(see group_payments.exceptions). Authentication failures are left to DRF.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for domain errors.

    Args:
        message: Human-readable description
        error_code: Overrides the class's ``default_error_code``
        details: Extra context (ids, amounts, validation messages)
    """

    default_error_code: str = "APPLICATION_ERROR"
    http_status: int = 400

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """API payload, e.g. ``{"error": ..., "error_code": "DEADLINE_EXPIRED"}``."""
        payload: dict[str, Any] = {"error": self.message, "error_code": self.error_code}
        if self.details:
            payload["details"] = self.details
        return payload

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


class ValidationError(BaseApplicationError):
    """Input the caller can fix; messages go in ``details["errors"]``."""

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    default_error_code: str = "NOT_FOUND"
    http_status: int = 404


class PermissionDeniedError(BaseApplicationError):
    """The caller is known but may not act on this resource."""

    default_error_code: str = "PERMISSION_DENIED"
    http_status: int = 403


class ConflictError(BaseApplicationError):
    """
    The resource's current state does not allow the operation.

    Covers invalid transitions, stale versions and lock contention.
    """

    default_error_code: str = "CONFLICT"
    http_status: int = 409


class ExternalServiceError(BaseApplicationError):
    """A third-party call failed; ``details`` must not leak secrets."""

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
    http_status: int = 502
