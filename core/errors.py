"""
core/errors.py -- Error taxonomy shared by every Stockroom layer.

One exception type, one closed set of kinds. Services raise
ServiceError(kind, ...) and never pick HTTP status codes themselves; the API
layer converts a kind to a status through STATUS_BY_KIND, the only place the
mapping lives. Adding a kind means adding one enum member and one table row.

Layer rule: core/ is the kernel. No imports from api/, auth/, or catalog/.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Abstract failure categories. The value doubles as the wire error code."""

    VALIDATION = "validation_error"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INTERNAL = "internal_error"


STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INTERNAL: 500,
}


class ServiceError(Exception):
    """A classified failure raised by the service and access layers.

    violations is only meaningful for VALIDATION and CONFLICT: a list of
    human-readable strings, one per offending field.
    """

    def __init__(self, kind: ErrorKind, message: str, violations: list[str] | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.violations = list(violations or [])

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]

    def __repr__(self) -> str:
        return f"ServiceError({self.kind.value!r}, {self.message!r})"


def validation_error(*violations: str) -> ServiceError:
    return ServiceError(ErrorKind.VALIDATION, "Validation failed.", list(violations))


def unauthorized(message: str = "Authentication required.") -> ServiceError:
    return ServiceError(ErrorKind.UNAUTHORIZED, message)


def forbidden(message: str = "Insufficient permissions.") -> ServiceError:
    return ServiceError(ErrorKind.FORBIDDEN, message)


def not_found(message: str) -> ServiceError:
    return ServiceError(ErrorKind.NOT_FOUND, message)


def conflict(*violations: str) -> ServiceError:
    return ServiceError(ErrorKind.CONFLICT, "Resource already exists.", list(violations))


def internal_error() -> ServiceError:
    return ServiceError(ErrorKind.INTERNAL, "An unexpected error occurred.")
