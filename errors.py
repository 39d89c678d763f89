"""Error hierarchy for the donation API.

Every error carries a code, a category and the HTTP status the API answers with.
Route handlers never catch these; the global handlers in main.py render them.
"""

from enum import Enum


class ErrorCategory(str, Enum):
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    AUTHENTICATION = "authentication"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    INTERNAL = "internal"


class BookWiseError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str, category: ErrorCategory, http_status: int = 500):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.http_status = http_status

    def to_response(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "category": self.category.value,
            }
        }


class NotFoundError(BookWiseError):
    """Requested entity does not exist."""

    def __init__(self, resource_type: str, resource_id: str, code: str = None, message: str = None):
        super().__init__(
            message or f"{resource_type} '{resource_id}' not found",
            code or f"{resource_type.upper()}_NOT_FOUND",
            ErrorCategory.NOT_FOUND,
            404,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class UnauthorizedError(BookWiseError):
    """Caller is known but lacks permission (not the owner, not a participant)."""

    def __init__(self, message: str, code: str = "UNAUTHORIZED"):
        super().__init__(message, code, ErrorCategory.UNAUTHORIZED, 403)


class AuthenticationError(BookWiseError):
    """No verified identity on the request."""

    def __init__(self, message: str = "Authorization token missing or invalid"):
        super().__init__(message, "AUTHENTICATION_REQUIRED", ErrorCategory.AUTHENTICATION, 401)


class ConflictError(BookWiseError):
    """Operation would violate a lifecycle invariant."""

    def __init__(self, message: str, code: str):
        super().__init__(message, code, ErrorCategory.CONFLICT, 409)


class ValidationError(BookWiseError):
    """Input is well-formed JSON but semantically invalid."""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR", field: str = None):
        super().__init__(message, code, ErrorCategory.VALIDATION, 400)
        self.field = field
