"""
Custom exception classes and error handling.

Provides consistent error responses across the API. Every error body has
the same machine-readable shape:

    {"success": false, "error": {"code": ..., "message": ...}, "timestamp": ...}
"""
from datetime import datetime, timezone
from enum import Enum
from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class ErrorCode(str, Enum):
    """Error taxonomy shared by the API, the middleware and the services."""
    UNAUTHENTICATED = "Unauthenticated"
    INSUFFICIENT_ROLE = "InsufficientRole"
    INVALID_CREDENTIAL = "InvalidCredential"
    EXPIRED_CREDENTIAL = "ExpiredCredential"
    EMAIL_NOT_VERIFIED = "EmailNotVerified"
    PROVIDER_UNAVAILABLE = "ProviderUnavailable"
    MALFORMED_REQUEST_BODY = "MalformedRequestBody"
    RESOURCE_NOT_FOUND = "ResourceNotFound"
    VALIDATION_FAILED = "ValidationFailed"
    RATE_LIMITED = "RateLimited"
    AGGREGATION_PARTIAL_FAILURE = "AggregationPartialFailure"

    @property
    def is_infrastructure(self) -> bool:
        """Infrastructure faults are 5xx and safe for the caller to retry with backoff."""
        return self is ErrorCode.PROVIDER_UNAVAILABLE


def error_body(code: str, message: str) -> Dict[str, Any]:
    """Build the structured error payload."""
    return {
        "success": False,
        "error": {
            "code": code.value if isinstance(code, ErrorCode) else str(code),
            "message": message,
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code

    def to_body(self) -> Dict[str, Any]:
        return error_body(self.error_code or "Error", self.detail)


class NotFoundError(APIException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found: {identifier}",
            error_code=ErrorCode.RESOURCE_NOT_FOUND
        )


class ValidationError(APIException):
    """Validation error."""

    def __init__(self, detail: str, errors: Optional[list] = None):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=ErrorCode.VALIDATION_FAILED
        )
        self.errors = errors or []

    def to_body(self) -> Dict[str, Any]:
        body = super().to_body()
        if self.errors:
            body["error"]["details"] = self.errors
        return body


class MalformedBodyError(APIException):
    """Request body could not be parsed."""

    def __init__(self, detail: str = "Invalid JSON in request body"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code=ErrorCode.MALFORMED_REQUEST_BODY
        )


class UnauthorizedError(APIException):
    """Authentication required."""

    def __init__(self, detail: str = "Authentication required", code: ErrorCode = ErrorCode.UNAUTHENTICATED):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code=code,
            headers={"WWW-Authenticate": "Bearer"}
        )


class ForbiddenError(APIException):
    """Access denied."""

    def __init__(self, detail: str = "Access denied"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code=ErrorCode.INSUFFICIENT_ROLE
        )


class ConflictError(APIException):
    """Resource conflict (e.g., template still referenced by entries)."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code=ErrorCode.VALIDATION_FAILED
        )


class ServiceUnavailableError(APIException):
    """An upstream provider or the document store is unreachable."""

    def __init__(self, detail: str = "Upstream service unavailable"):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            error_code=ErrorCode.PROVIDER_UNAVAILABLE
        )
