"""
Service layer primitives.

Services return a ServiceResult for outcomes the caller is expected to
handle (a participant paying twice, a deadline that already passed, an
unknown share) and let everything else raise.

    class SplitPaymentLedger(BaseService):
        def confirm_payment(self, individual_id, confirmation_id):
            try:
                payment = self._get_individual(individual_id)
                return ServiceResult.success(self._confirm(payment, confirmation_id))
            except BaseApplicationError as e:
                return self.failure_from(e)

Views hand failed results straight to DRF:

    if not result:
        return Response(result.to_response(), status=result.http_status)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Iterator
    from typing import Any

    from core.exceptions import BaseApplicationError

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Outcome of a service call.

    ``data`` is only meaningful when ``success`` is true. Failed results
    carry a stable ``error_code`` for clients and the HTTP status the API
    should answer with.
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = None
    http_status: int = 400

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        return cls(success=True, data=data, http_status=200)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
        http_status: int = 400,
    ) -> ServiceResult[T]:
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
            http_status=http_status,
        )

    @classmethod
    def from_exception(cls, exc: Exception, error_code: str | None = None) -> ServiceResult[T]:
        """
        Build a failed result from an exception.

        Application errors keep their code and status, and a
        ``details["errors"]`` list becomes ``non_field_errors``. Other
        exceptions are reported under their class name.
        """
        messages = (getattr(exc, "details", None) or {}).get("errors")
        return cls.failure(
            getattr(exc, "message", None) or str(exc),
            error_code=(
                error_code
                or getattr(exc, "error_code", None)
                or type(exc).__name__.upper()
            ),
            errors={"non_field_errors": list(messages)} if messages else None,
            http_status=getattr(exc, "http_status", 400),
        )

    def to_response(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}

        body: dict[str, Any] = {"success": False, "error": self.error}
        if self.error_code:
            body["error_code"] = self.error_code
        if self.errors:
            body["errors"] = self.errors
        return body

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for domain services.

    Collaborators (config, gateway, notifier) come in through the
    constructor; a service keeps no other state between calls.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Logger named ``<module>.<ServiceClass>``."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Iterator[None]:
        """Run the block in one database transaction."""
        with transaction.atomic():
            yield

    @classmethod
    def failure_from(cls, exc: BaseApplicationError) -> ServiceResult:
        """Log a rejected operation and turn it into a failed result."""
        cls.get_logger().info(
            "Operation rejected",
            extra={"error_code": exc.error_code, "reason": exc.message},
        )
        return ServiceResult.from_exception(exc)
