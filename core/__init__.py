"""
Shared infrastructure for the bookings and group_payments apps.

- core.services: ServiceResult, BaseService
- core.exceptions: BaseApplicationError and its HTTP-mapped subclasses
- core.models / core.model_mixins: abstract BaseModel, UUID and version mixins
- core.helpers: generate_token

Models are not re-exported here; importing them before the app registry
is ready raises AppRegistryNotReady.
"""

from .exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from .helpers import generate_token
from .services import BaseService, ServiceResult

__all__ = [
    "BaseApplicationError",
    "BaseService",
    "ConflictError",
    "ExternalServiceError",
    "NotFoundError",
    "PermissionDeniedError",
    "ServiceResult",
    "ValidationError",
    "generate_token",
]
