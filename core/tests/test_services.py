"""
Tests for ServiceResult and BaseService.
"""

import pytest
from django.contrib.auth import get_user_model

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from core.services import BaseService, ServiceResult


class TestServiceResult:
    def test_success(self):
        result = ServiceResult.success({"id": 1})

        assert result.success
        assert bool(result) is True
        assert result.http_status == 200
        assert result.to_response() == {"success": True, "data": {"id": 1}}

    def test_failure(self):
        result = ServiceResult.failure("Nope", error_code="NOPE", http_status=409)

        assert not result
        assert result.to_response() == {
            "success": False,
            "error": "Nope",
            "error_code": "NOPE",
        }

    def test_from_application_error_keeps_code_and_status(self):
        exc = NotFoundError("Split payment not found", error_code="SPLIT_PAYMENT_NOT_FOUND")

        result = ServiceResult.from_exception(exc)

        assert result.error == "Split payment not found"
        assert result.error_code == "SPLIT_PAYMENT_NOT_FOUND"
        assert result.http_status == 404

    def test_from_validation_error_lists_field_errors(self):
        exc = ValidationError(
            "Validation failed",
            details={"errors": ["Total amount must be greater than 0", "Duplicate participants detected"]},
        )

        result = ServiceResult.from_exception(exc)

        assert result.errors == {
            "non_field_errors": [
                "Total amount must be greater than 0",
                "Duplicate participants detected",
            ]
        }
        assert result.to_response()["errors"] == result.errors

    def test_from_plain_exception_named_after_class(self):
        result = ServiceResult.from_exception(KeyError("x"))

        assert result.error_code == "KEYERROR"
        assert result.http_status == 400

    def test_error_code_override(self):
        result = ServiceResult.from_exception(ConflictError("busy"), error_code="BUSY")

        assert result.error_code == "BUSY"
        assert result.http_status == 409


class TestBaseApplicationError:
    def test_to_dict(self):
        exc = ConflictError("Version mismatch", details={"pk": "abc"})

        assert exc.to_dict() == {
            "error": "Version mismatch",
            "error_code": "CONFLICT",
            "details": {"pk": "abc"},
        }

    def test_str_includes_code(self):
        assert str(BaseApplicationError("Boom")) == "[APPLICATION_ERROR] Boom"


class ExampleService(BaseService):
    pass


class TestBaseService:
    def test_logger_named_after_service(self):
        assert ExampleService.get_logger().name == f"{__name__}.ExampleService"

    def test_failure_from(self):
        result = ExampleService.failure_from(NotFoundError("missing"))

        assert not result.success
        assert result.error_code == "NOT_FOUND"

    @pytest.mark.django_db
    def test_atomic_rolls_back(self):
        user_model = get_user_model()

        with pytest.raises(RuntimeError):
            with ExampleService.atomic():
                user_model.objects.create(username="rolled-back")
                raise RuntimeError("abort")

        assert not user_model.objects.filter(username="rolled-back").exists()
