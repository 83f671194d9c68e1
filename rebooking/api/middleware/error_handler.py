"""
Error handler middleware and custom exceptions.

Provides consistent error responses and custom exception classes
for common application errors. Every error body has the same shape:
{"error": <message>, "code": <machine code>, "correlation_id": ..., "details": ...}
"""
import logging
from typing import Optional, Dict, Any
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from rebooking.lib.logging import get_logger

logger = get_logger(__name__)


# Custom exception classes
class AppException(Exception):
    """Base application exception."""

    code = "internal_error"

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        if code is not None:
            self.code = code
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    code = "not_found"

    def __init__(self, resource: str, resource_id: Optional[str] = None, message: Optional[str] = None):
        if message is None:
            message = f"{resource} not found"
            if resource_id:
                message = f"{resource} with id '{resource_id}' not found"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "resource_id": resource_id},
        )


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    code = "unauthorized"

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
        )


class ConflictException(AppException):
    """Resource conflict exception."""

    code = "conflict"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details or {},
        )


class GoneException(AppException):
    """Resource existed but is no longer usable."""

    code = "gone"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_410_GONE,
            details=details or {},
        )


class ValidationException(AppException):
    """Validation error exception."""

    code = "validation_error"

    def __init__(self, message: str, errors: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"errors": errors or {}},
        )


# Exception handlers
async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Handler for custom application exceptions.

    Returns consistent error response with correlation ID.
    """
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    log_level = logging.WARNING if exc.status_code < 500 else logging.ERROR
    logger.log(
        log_level,
        f"Application error: {exc.message}",
        extra={
            "status_code": exc.status_code,
            "error_code": exc.code,
            "path": request.url.path,
            "method": request.method,
            "details": exc.details,
        },
    )

    response_content = {
        "error": exc.message,
        "code": exc.code,
        "correlation_id": correlation_id,
    }
    if exc.details:
        response_content["details"] = exc.details

    return JSONResponse(
        status_code=exc.status_code,
        content=response_content,
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """
    Handler for Pydantic validation errors.

    Formats validation errors in a consistent way.
    """
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    errors = [
        {
            "loc": list(error["loc"]),
            "msg": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]

    logger.warning(
        "Validation error",
        extra={
            "path": request.url.path,
            "method": request.method,
            "errors": errors,
        },
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation error",
            "code": "validation_error",
            "correlation_id": correlation_id,
            "details": {"errors": errors},
        },
    )


async def http_exception_handler(
    request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Handler for Starlette HTTP exceptions."""
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    logger.warning(
        f"HTTP exception: {exc.detail}",
        extra={
            "status_code": exc.status_code,
            "path": request.url.path,
            "method": request.method,
        },
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.detail,
            "code": "http_error",
            "correlation_id": correlation_id,
        },
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handler for unhandled exceptions.

    Logs full stack trace and returns generic error message.
    """
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    logger.error(
        f"Unhandled exception: {exc}",
        extra={
            "path": request.url.path,
            "method": request.method,
        },
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "code": "internal_error",
            "correlation_id": correlation_id,
        },
    )
