"""
codemark/errors.py
Centralized error handling for the submission API

ERROR RESPONSE STRUCTURE:
{
    "success": false,
    "error": "ErrorType",
    "message": "Human-readable description",
    "code": "UNIQUE_ERROR_CODE",
    "details": {} (optional)
}

HTTP STATUS CODE DISCIPLINE:
- 400: Invalid input / unsupported upload
- 401: Bearer token missing or invalid
- 403: Role or ownership check failed
- 404: Resource does not exist
- 409: Submission is not in a state that allows the operation
- 422: Validation error (Pydantic)
- 429: Rate limit exceeded
- 502: Analysis provider failed
- 504: Polling gave up before the provider finished
- 500: NEVER caused by user input (internal only)
"""

import logging
from typing import Optional, Dict, Any
from fastapi import status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ErrorCode:
    """Unique error codes for machine-readable error handling"""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    UNSUPPORTED_FILE_TYPE = "UNSUPPORTED_FILE_TYPE"
    INVALID_ARCHIVE = "INVALID_ARCHIVE"
    DUPLICATE_RESOURCE = "DUPLICATE_RESOURCE"

    AUTH_REQUIRED = "AUTH_REQUIRED"
    AUTH_INVALID = "AUTH_INVALID"

    FORBIDDEN = "FORBIDDEN"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    OWNERSHIP_VIOLATION = "OWNERSHIP_VIOLATION"

    NOT_FOUND = "NOT_FOUND"

    STATE_TRANSITION_INVALID = "STATE_TRANSITION_INVALID"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"

    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    POLL_TIMEOUT = "POLL_TIMEOUT"

    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorResponse(BaseModel):
    """Standard error response model"""
    success: bool = False
    error: str
    message: str
    code: str
    details: Optional[Dict[str, Any]] = None


class APIError(Exception):
    """Base API exception with consistent structure"""

    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        code: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.status_code = status_code
        self.error = error
        self.message = message
        self.code = code
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the error envelope"""
        result = {
            "success": False,
            "error": self.error,
            "message": self.message,
            "code": self.code
        }
        if self.details:
            result["details"] = self.details
        return result

    def to_response(self) -> JSONResponse:
        """Convert to FastAPI JSONResponse"""
        headers = None
        if self.status_code == status.HTTP_401_UNAUTHORIZED:
            headers = {"WWW-Authenticate": "Bearer"}
        return JSONResponse(status_code=self.status_code, content=self.to_dict(), headers=headers)


class ValidationError(APIError):
    """400 Bad Request - payload shape, size or type rejected"""
    def __init__(self, message: str, code: str = ErrorCode.VALIDATION_ERROR, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="Validation Error",
            message=message,
            code=code,
            details=details
        )


class UnauthorizedError(APIError):
    """401 Unauthorized - bearer token missing or invalid"""
    def __init__(self, message: str = "Authentication required", code: str = ErrorCode.AUTH_REQUIRED):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error="Unauthorized",
            message=message,
            code=code
        )


class ForbiddenError(APIError):
    """403 Forbidden - Access denied"""
    def __init__(self, message: str, code: str = ErrorCode.FORBIDDEN, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error="Forbidden",
            message=message,
            code=code,
            details=details
        )


class NotFoundError(APIError):
    """404 Not Found - Resource does not exist"""
    def __init__(self, resource: str, identifier: Any = None, code: str = ErrorCode.NOT_FOUND):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error="Not Found",
            message=message,
            code=code
        )


class StateConflictError(APIError):
    """409 Conflict - transition not allowed from the current status"""
    def __init__(self, message: str, code: str = ErrorCode.STATE_TRANSITION_INVALID, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error="State Conflict",
            message=message,
            code=code,
            details=details
        )


class UpstreamError(APIError):
    """502 Bad Gateway - the analysis provider call failed"""
    def __init__(self, message: str, code: str = ErrorCode.UPSTREAM_ERROR, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            error="Upstream Error",
            message=message,
            code=code,
            details=details
        )


class PollTimeoutError(APIError):
    """504 Gateway Timeout - polling exhausted, job may still finish later"""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            error="Poll Timeout",
            message=message,
            code=ErrorCode.POLL_TIMEOUT,
            details=details
        )


def get_error_summary() -> Dict[str, Any]:
    """Return summary of error handling system for documentation"""
    return {
        "service": "codemark-error-handler",
        "response_structure": {
            "success": "boolean (always false for errors)",
            "error": "string (error type)",
            "message": "string (human-readable)",
            "code": "string (machine-readable)",
            "details": "object (optional)"
        },
        "status_codes": {
            "400": "Invalid input / unsupported upload",
            "401": "Authentication missing or invalid",
            "403": "Access forbidden (role / ownership)",
            "404": "Resource does not exist",
            "409": "Invalid submission state transition",
            "422": "Validation error (Pydantic)",
            "429": "Rate limit exceeded",
            "502": "Analysis provider failure",
            "504": "Polling timed out",
            "500": "Internal error (NEVER caused by user input)"
        },
        "error_codes": [
            attr for attr in dir(ErrorCode)
            if not attr.startswith('_')
        ]
    }
