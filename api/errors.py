"""
api/errors.py -- ErrorKind -> HTTP status mapping and the error envelope.

The core raises one exception type (ServiceError) carrying an ErrorKind. The
HTTP status is a lookup on the kind's category, not a dispatch on exception
subclasses. Body shape:

    {"status": 401, "code": 2202, "message": "Invalid authentication token",
     "path": "/api/v1/auth/refresh", "timestamp": "..."}

fieldErrors is present only for validation failures.
"""

from __future__ import annotations

from pydantic.alias_generators import to_camel

from api.models import ErrorResponse
from core.config import utcnow
from core.errors import ErrorCategory, ErrorKind, ServiceError

STATUS_BY_CATEGORY: dict[ErrorCategory, int] = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.AUTHENTICATION: 401,
    ErrorCategory.FORBIDDEN: 403,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.CONFLICT: 409,
    ErrorCategory.INFRASTRUCTURE: 503,
    ErrorCategory.INTERNAL: 500,
}


def status_for(kind: ErrorKind) -> int:
    return STATUS_BY_CATEGORY.get(kind.category, 500)


def error_body(
    kind: ErrorKind,
    path: str,
    message: str | None = None,
    field_errors: dict[str, str] | None = None,
) -> dict:
    """Serialised envelope for kind. field_errors keys are emitted as given."""
    envelope = ErrorResponse(
        status=status_for(kind),
        code=kind.code,
        message=message or kind.default_message,
        field_errors=field_errors or None,
        path=path,
        timestamp=utcnow(),
    )
    return envelope.model_dump(mode="json", by_alias=True, exclude_none=True)


def service_error_body(exc: ServiceError, path: str) -> dict:
    """Envelope for a ServiceError, showing only its public kind and message.

    Field names from the core are snake_case; the wire uses camelCase.
    """
    field_errors = {to_camel(name): text for name, text in exc.field_errors.items()}
    return error_body(exc.public_kind, path, exc.public_message, field_errors or None)


def http_error_body(status: int, path: str, message: str | None = None) -> dict:
    """Envelope for framework-level HTTP errors (unknown route, wrong method, ...)."""
    if status == 404:
        kind = ErrorKind.RESOURCE_NOT_FOUND
    elif status >= 500:
        kind = ErrorKind.INTERNAL_ERROR
    else:
        kind = ErrorKind.VALIDATION_ERROR
    envelope = ErrorResponse(
        status=status,
        code=kind.code,
        message=message or kind.default_message,
        path=path,
        timestamp=utcnow(),
    )
    return envelope.model_dump(mode="json", by_alias=True, exclude_none=True)
