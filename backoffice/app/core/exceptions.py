"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import IntegrityError

from backoffice.app.core.config import settings

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = 500,
        details: Dict[str, Any] = None,
        extra: Dict[str, Any] = None,
        headers: Dict[str, str] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        # Merged into the top level of the response body
        self.extra = extra or {}
        self.headers = headers
        super().__init__(message)


class ValidationError(AppException):
    """Raised for malformed or missing input fields."""

    def __init__(self, errors: List[str], message: str = "Validation error"):
        super().__init__(
            message=message,
            error_code="ERR_VALIDATION",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"errors": errors},
        )


class Unauthenticated(AppException):
    """Raised when a request carries no valid credentials (or a disabled account)."""

    def __init__(self, message: str = "Authentication required", error_code: str = "ERR_AUTH_001"):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_401_UNAUTHORIZED,
            headers={"WWW-Authenticate": "Bearer"},
        )


class InvalidToken(Unauthenticated):
    """Raised when a JWT has a bad signature, the wrong type, or has expired."""

    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(message=message, error_code="ERR_AUTH_002")


class SessionNotFound(Unauthenticated):
    """Raised when no live session matches a token."""

    def __init__(self, message: str = "Session expired or not found"):
        super().__init__(message=message, error_code="ERR_AUTH_003")


class Forbidden(AppException):
    """Raised when an authenticated identity lacks a required permission or role."""

    def __init__(self, message: str = "Insufficient permissions", extra: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=extra,
            extra=extra,
        )


class NotFound(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None, message: Optional[str] = None):
        if message is None:
            message = f"{resource} not found"
            if resource_id is not None:
                message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id},
        )


class NotAssigned(NotFound):
    """Raised when revoking a role the user does not hold."""

    def __init__(self, user_id: int, role_id: int):
        super().__init__(
            resource="UserRole",
            message="Role is not assigned to this user",
        )
        self.details = {"user_id": user_id, "role_id": role_id}


class Conflict(AppException):
    """Raised when an operation conflicts with existing state. Never partially applied."""

    def __init__(self, message: str, error_code: str = "ERR_CONFLICT_001"):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_400_BAD_REQUEST,
        )


class AlreadyAssigned(Conflict):
    """Raised when assigning a role the user already holds."""

    def __init__(self):
        super().__init__(message="Role is already assigned to this user", error_code="ERR_CONFLICT_002")


class InvalidOrExpiredToken(AppException):
    """Raised when a reset or verification token fails lookup. Never says which."""

    def __init__(self, message: str = "Token is invalid or has expired"):
        super().__init__(
            message=message,
            error_code="ERR_TOKEN_001",
            status_code=status.HTTP_400_BAD_REQUEST,
        )


class InvalidCredential(AppException):
    """Raised when the current password supplied for a change does not verify."""

    def __init__(self, message: str = "Current password is incorrect"):
        super().__init__(
            message=message,
            error_code="ERR_CRED_001",
            status_code=status.HTTP_400_BAD_REQUEST,
        )


class SamePassword(AppException):
    """Raised when the new password equals the current one."""

    def __init__(self):
        super().__init__(
            message="New password must be different from the current password",
            error_code="ERR_CRED_002",
            status_code=status.HTTP_400_BAD_REQUEST,
        )


class RateLimitExceeded(AppException):
    """Raised when a client exceeds a rate limit window."""

    def __init__(self, message: str = "Too many requests, please try again later", retry_after: int = None):
        super().__init__(
            message=message,
            error_code="ERR_RATE_LIMIT",
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            headers={"Retry-After": str(retry_after)} if retry_after else None,
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    content = {
        "success": False,
        "error_code": exc.error_code,
        "message": exc.message,
        "details": exc.details,
    }
    content.update(exc.extra)
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        405: "ERR_METHOD_NOT_ALLOWED",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors: 400 with a field-level message list."""
    errors = []
    for error in exc.errors():
        # Drop the "body"/"query" location prefix
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(location) or "request"
        errors.append(f"{field}: {error.get('msg')}")

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "success": False,
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": errors
            }
        }
    )


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """Handler for unique/foreign key violations that slipped past service checks."""
    logger.error("Database integrity error: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "success": False,
            "error_code": "ERR_CONFLICT_001",
            "message": "The request conflicts with existing data",
            "details": {}
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)

    details = {}
    if settings.is_development:
        details = {"exception": type(exc).__name__, "detail": str(exc)}

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": details
        }
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
