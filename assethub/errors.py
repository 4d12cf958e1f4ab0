"""
Typed application errors.

Services raise these; ``exception_handlers`` turns them into the JSON response
envelope with the matching HTTP status. Nothing here is retried automatically.
"""
from typing import Any, Dict, List, Optional


class AppError(Exception):
    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict[str, Any]]] = None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Validation failed"


class AuthenticationError(AppError):
    status_code = 401
    default_message = "Authentication required"


class AuthorizationError(AppError):
    status_code = 403
    default_message = "Insufficient permissions"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Resource not found"


class ConflictError(AppError):
    status_code = 409
    default_message = "Conflict"


class InternalError(AppError):
    status_code = 500
