from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from rest_framework import status
from rest_framework.exceptions import (
    APIException,
    AuthenticationFailed,
    MethodNotAllowed,
    NotAuthenticated,
    NotFound,
    NotAcceptable,
    ParseError,
    PermissionDenied,
    Throttled,
    UnsupportedMediaType,
    ValidationError,
)
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)

GENERIC_SERVER_ERROR_MESSAGE = "An unexpected error occurred."

EXCEPTION_CODE_MAP: dict[type[Exception], str] = {
    ValidationError: "validation_error",
    NotAuthenticated: "not_authenticated",
    AuthenticationFailed: "authentication_failed",
    PermissionDenied: "permission_denied",
    NotFound: "not_found",
    MethodNotAllowed: "method_not_allowed",
    NotAcceptable: "not_acceptable",
    UnsupportedMediaType: "unsupported_media_type",
    ParseError: "parse_error",
    Throttled: "throttled",
}


class ErrorCategory:
    VALIDATION = "validation"
    CONFLICT = "conflict"
    INTEGRITY = "integrity"
    NOT_FOUND = "not_found"
    PERMISSION = "permission"


CATEGORY_STATUS_MAP: dict[str, int] = {
    ErrorCategory.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorCategory.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCategory.INTEGRITY: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCategory.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCategory.PERMISSION: status.HTTP_403_FORBIDDEN,
}


@dataclass(frozen=True)
class DomainError:
    """A rejected business operation, returned (not raised) by the POS services.

    ``code`` is stable and meant for clients to branch on, ``category`` tells
    whether the caller should fix its input, refresh its state or report a bug.
    """

    category: str
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def status_code(self) -> int:
        return CATEGORY_STATUS_MAP.get(self.category, status.HTTP_400_BAD_REQUEST)

    @classmethod
    def validation(cls, code: str, message: str, **details: Any) -> DomainError:
        return cls(ErrorCategory.VALIDATION, code, message, details)

    @classmethod
    def conflict(cls, code: str, message: str, **details: Any) -> DomainError:
        return cls(ErrorCategory.CONFLICT, code, message, details)

    @classmethod
    def integrity(cls, code: str, message: str, **details: Any) -> DomainError:
        return cls(ErrorCategory.INTEGRITY, code, message, details)

    @classmethod
    def not_found(cls, code: str, message: str, **details: Any) -> DomainError:
        return cls(ErrorCategory.NOT_FOUND, code, message, details)

    @classmethod
    def permission(cls, code: str, message: str, **details: Any) -> DomainError:
        return cls(ErrorCategory.PERMISSION, code, message, details)


class RollbackError(Exception):
    """Carries a DomainError out of an atomic block so the transaction rolls back."""

    def __init__(self, error: DomainError):
        super().__init__(error.message)
        self.error = error


def build_error_envelope(
    *,
    code: str,
    message: str,
    errors: Any,
    status_code: int,
) -> dict[str, Any]:
    return {
        "code": code,
        "message": message,
        "errors": errors,
        "status": status_code,
    }


def error_response(
    *,
    code: str,
    message: str,
    errors: Any = None,
    status_code: int = status.HTTP_400_BAD_REQUEST,
) -> Response:
    return Response(
        build_error_envelope(
            code=code,
            message=message,
            errors=errors,
            status_code=status_code,
        ),
        status=status_code,
    )


def domain_error_response(error: DomainError) -> Response:
    return error_response(
        code=error.code,
        message=error.message,
        errors={"category": error.category, **error.details},
        status_code=error.status_code,
    )


def custom_exception_handler(exc: Exception, context: dict[str, Any]) -> Response:
    response = drf_exception_handler(exc, context)

    if response is None:
        view_name = context.get("view").__class__.__name__ if context.get("view") else "unknown"
        logger.exception("Unhandled API exception in %s", view_name)
        return error_response(
            code="internal_server_error",
            message=GENERIC_SERVER_ERROR_MESSAGE,
            errors=None,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    status_code = response.status_code
    errors = _normalize_errors(response.data)
    message = _build_message(exc, response.data)
    code = _build_code(exc)

    response.data = build_error_envelope(
        code=code,
        message=message,
        errors=errors,
        status_code=status_code,
    )
    return response


def _build_code(exc: Exception) -> str:
    for exception_type, stable_code in EXCEPTION_CODE_MAP.items():
        if isinstance(exc, exception_type):
            return stable_code

    if isinstance(exc, APIException):
        return str(getattr(exc, "default_code", "api_error"))

    return "internal_server_error"


def _build_message(exc: Exception, data: Any) -> str:
    if isinstance(exc, ValidationError):
        return "Validation failed."

    detail = None
    if isinstance(data, Mapping):
        detail = data.get("detail")
    elif isinstance(data, str):
        detail = data

    if detail:
        return str(detail)

    if isinstance(exc, Throttled):
        return "Request was throttled."

    if isinstance(exc, APIException):
        return str(getattr(exc, "detail", "Request failed."))

    return GENERIC_SERVER_ERROR_MESSAGE


def _normalize_errors(data: Any) -> Any:
    if isinstance(data, Mapping):
        if set(data.keys()) == {"detail"}:
            return None
        return data

    if isinstance(data, Sequence) and not isinstance(data, str):
        return data

    return None
