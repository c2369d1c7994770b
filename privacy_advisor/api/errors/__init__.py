"""
API error types and exception handlers.
"""

from privacy_advisor.api.errors.exceptions import (
    APIException,
    AuthorizationException,
    NotFoundException,
    QuotaExceededException,
    ServiceUnavailableException,
    ValidationException,
)
from privacy_advisor.api.errors.handlers import register_exception_handlers

__all__ = [
    'APIException',
    'AuthorizationException',
    'NotFoundException',
    'QuotaExceededException',
    'ServiceUnavailableException',
    'ValidationException',
    'register_exception_handlers',
]
