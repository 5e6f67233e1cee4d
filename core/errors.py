"""
core/errors.py -- Error taxonomy for the Tokenguard core.

One exception type (ServiceError) carries one ErrorKind. The kind owns a
stable numeric code, a default message, and a category; transport layers map
kinds to status codes with a lookup table (api/errors.py) instead of
dispatching on exception subclasses.

Authentication sub-reasons (expired vs revoked vs malformed token, unknown
user vs wrong password vs inactive account) are kept on the exception for
logging. ServiceError.public_kind collapses them so callers see a uniform
answer and cannot use the error to enumerate accounts or probe token state.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    INTERNAL = "internal"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    AUTHENTICATION = "authentication"
    FORBIDDEN = "forbidden"
    INFRASTRUCTURE = "infrastructure"


class ErrorKind(Enum):
    """Every failure the core can report, with its wire code and default message."""

    INTERNAL_ERROR = (1000, "Internal server error", ErrorCategory.INTERNAL)
    VALIDATION_ERROR = (1001, "Validation error", ErrorCategory.VALIDATION)
    RESOURCE_NOT_FOUND = (1002, "Resource not found", ErrorCategory.NOT_FOUND)

    USER_NOT_FOUND = (2100, "User not found", ErrorCategory.NOT_FOUND)
    USER_ALREADY_EXISTS = (2101, "User already exists", ErrorCategory.CONFLICT)
    USER_INACTIVE = (2105, "User account is inactive", ErrorCategory.AUTHENTICATION)
    ROLE_NOT_FOUND = (2106, "Role not found", ErrorCategory.NOT_FOUND)

    INVALID_CREDENTIALS = (2200, "Invalid username or password", ErrorCategory.AUTHENTICATION)
    TOKEN_EXPIRED = (2201, "Authentication token has expired", ErrorCategory.AUTHENTICATION)
    TOKEN_INVALID = (2202, "Invalid authentication token", ErrorCategory.AUTHENTICATION)
    TOKEN_REVOKED = (2203, "Authentication token has been revoked", ErrorCategory.AUTHENTICATION)
    UNAUTHORIZED_ACCESS = (2204, "Unauthorized access", ErrorCategory.AUTHENTICATION)
    INSUFFICIENT_PERMISSIONS = (2205, "Insufficient permissions", ErrorCategory.FORBIDDEN)

    DATABASE_ERROR = (3000, "Service temporarily unavailable", ErrorCategory.INFRASTRUCTURE)
    STORE_TIMEOUT = (3002, "Service temporarily unavailable", ErrorCategory.INFRASTRUCTURE)

    def __init__(self, code: int, default_message: str, category: ErrorCategory) -> None:
        self.code = code
        self.default_message = default_message
        self.category = category


# Internal sub-reason -> kind shown to the caller.
_PUBLIC_KIND: dict[ErrorKind, ErrorKind] = {
    ErrorKind.USER_INACTIVE: ErrorKind.INVALID_CREDENTIALS,
    ErrorKind.TOKEN_EXPIRED: ErrorKind.TOKEN_INVALID,
    ErrorKind.TOKEN_REVOKED: ErrorKind.TOKEN_INVALID,
    ErrorKind.STORE_TIMEOUT: ErrorKind.DATABASE_ERROR,
}

# Categories whose messages are replaced by the public kind's default message.
_OPAQUE_CATEGORIES = {
    ErrorCategory.AUTHENTICATION,
    ErrorCategory.FORBIDDEN,
    ErrorCategory.INFRASTRUCTURE,
    ErrorCategory.INTERNAL,
}


class ServiceError(Exception):
    """The single exception type raised by the core.

    Args:
        kind:         What went wrong.
        message:      Detail for logs (and for the caller when the category is
                      not opaque, e.g. validation or conflict).
        field_errors: Accumulated field -> message map for VALIDATION_ERROR.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str | None = None,
        field_errors: dict[str, str] | None = None,
    ) -> None:
        self.kind = kind
        self.message = message or kind.default_message
        self.field_errors = dict(field_errors) if field_errors else {}
        super().__init__(self.message)

    @property
    def category(self) -> ErrorCategory:
        return self.kind.category

    @property
    def public_kind(self) -> ErrorKind:
        return _PUBLIC_KIND.get(self.kind, self.kind)

    @property
    def public_message(self) -> str:
        """Message safe to return to the caller."""
        if self.category in _OPAQUE_CATEGORIES:
            return self.public_kind.default_message
        return self.message

    def __repr__(self) -> str:
        return f"ServiceError({self.kind.name}, {self.message!r})"
