"""
API middleware module.
"""
from rebooking.api.middleware.error_handler import (
    AppException,
    NotFoundException,
    UnauthorizedException,
    ConflictException,
    GoneException,
    ValidationException,
    app_exception_handler,
    validation_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
)

__all__ = [
    "AppException",
    "NotFoundException",
    "UnauthorizedException",
    "ConflictException",
    "GoneException",
    "ValidationException",
    "app_exception_handler",
    "validation_exception_handler",
    "http_exception_handler",
    "unhandled_exception_handler",
]
