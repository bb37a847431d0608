"""
API middleware module.
"""
from src.api.middleware.error_handler import (
    AppException,
    app_exception_handler,
    domain_exception_handler,
    validation_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
)

__all__ = [
    "AppException",
    "app_exception_handler",
    "domain_exception_handler",
    "validation_exception_handler",
    "http_exception_handler",
    "unhandled_exception_handler",
]
