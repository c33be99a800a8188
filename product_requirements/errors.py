"""
Service error taxonomy.

Every failure raised by the service layer carries a stable machine-readable
``code`` and a human ``message``. The HTTP layer maps the error class to a
status code; the service layer never deals with HTTP.
"""

from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base class for all typed service failures."""

    code = "INTERNAL_ERROR"
    http_status = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        if code is not None:
            self.code = code
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"error": error}


class InputValidationError(ServiceError):
    """Client-fixable input problem. Never retried."""

    code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(ServiceError):
    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, entity_kind: str, identifier: str):
        self.entity_kind = entity_kind
        self.identifier = identifier
        super().__init__(f"{entity_kind} '{identifier}' not found")


class ConflictError(ServiceError):
    """Invariant violation: duplicates, cycles, dependents, in-use data."""

    code = "CONFLICT"
    http_status = 409


class AuthenticationError(ServiceError):
    code = "AUTHENTICATION_REQUIRED"
    http_status = 401


class PermissionDeniedError(ServiceError):
    code = "INSUFFICIENT_PERMISSIONS"
    http_status = 403


class StorageError(ServiceError):
    code = "STORAGE_ERROR"
    http_status = 500


class DeadlineExceeded(ServiceError):
    code = "TIMEOUT"
    http_status = 504

    def __init__(self, operation: str = "request"):
        super().__init__(f"Deadline exceeded during {operation}")
