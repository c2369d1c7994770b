"""
Custom exception classes for the API.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

from privacy_advisor.models.quota import RateLimitInfo


class APIException(HTTPException):
    """Base API exception class."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(status_code=status_code, detail=message, headers=headers)

    def response_body(self) -> Optional[Dict[str, Any]]:
        """Body replacing the standard error envelope, or None to use it."""
        return None


class ValidationException(APIException):
    """Validation error exception."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            code="VALIDATION_ERROR",
            message=message,
            details=details
        )


class NotFoundException(APIException):
    """Resource not found exception."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            code="NOT_FOUND",
            message=f"{resource} with ID {resource_id} not found",
            details={"resource": resource, "resource_id": resource_id}
        )


class QuotaExceededException(APIException):
    """Daily scan quota exhausted; answered with the problem-details body."""

    def __init__(self, info: RateLimitInfo, limit: int, upgrade_url: str = "/pricing"):
        self.info = info
        self.limit = limit
        self.upgrade_url = upgrade_url
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            code="RATE_LIMIT_EXCEEDED",
            message=f"You have reached the daily limit of {limit} free scans.",
            details=info.to_response()
        )

    def response_body(self) -> Dict[str, Any]:
        return {
            "type": "rate_limit_exceeded",
            "title": "Daily Limit Reached",
            "status": self.status_code,
            "detail": self.message,
            **self.info.to_response(),
            "upgradeUrl": self.upgrade_url,
        }


class ServiceUnavailableException(APIException):
    """A backing service needed for the request is unavailable."""

    def __init__(self, service: str, message: str):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            code="SERVICE_UNAVAILABLE",
            message=f"{service} unavailable: {message}",
            details={"service": service}
        )


class AuthorizationException(APIException):
    """Authorization error exception."""

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            code="AUTHORIZATION_ERROR",
            message=message
        )
