"""
Error taxonomy and standardized error responses.

Standard Error Response Format:
{
    "detail": {
        "code": "ERROR_CODE",
        "message": "Human readable message"
    }
}

Services raise AppError subclasses; the exception handler registered in
main.py turns them into the format above. Background loops catch, log and
continue instead.
"""
from enum import Enum
from typing import Optional, Dict, Any
from loguru import logger
from fastapi import Request
from fastapi.responses import JSONResponse


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # Authentication errors (401)
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"

    # Not found errors (404)
    NOT_FOUND = "NOT_FOUND"

    # Validation errors (400)
    INVALID_REQUEST = "INVALID_REQUEST"

    # Server errors (500/502/503)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"


def create_error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Create a standardized error response dict.

    Args:
        code: Error code enum value
        message: Human-readable error message
        status_code: HTTP status code (for reference, not included in response)
        details: Optional additional details

    Returns:
        Error response dict used as the "detail" of the JSON body
    """
    response = {
        "code": code.value,
        "message": message
    }
    if details:
        response["details"] = details
    return response


class AppError(Exception):
    """Base class of every error the service raises on purpose."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_response(self) -> Dict[str, Any]:
        return create_error_response(self.code, self.message, self.status_code, self.details)


class UnauthorizedError(AppError):
    code = ErrorCode.UNAUTHORIZED
    status_code = 401


class NotFoundError(AppError):
    code = ErrorCode.NOT_FOUND
    status_code = 404


class BadRequestError(AppError):
    code = ErrorCode.INVALID_REQUEST
    status_code = 400


class ServiceUnavailableError(AppError):
    """A collaborator is not configured (yet). A configuration gap, not a bug."""
    code = ErrorCode.SERVICE_UNAVAILABLE
    status_code = 503


class UpstreamError(AppError):
    """Failure reported by (or while talking to) a third-party API."""

    code = ErrorCode.EXTERNAL_SERVICE_ERROR
    status_code = 502

    def __init__(self, message: str = "", status: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.status = status

    @property
    def is_unauthorized(self) -> bool:
        return self.status == 401

    @property
    def is_transient(self) -> bool:
        return self.status is not None and (self.status == 429 or self.status >= 500)


class TwitchApiError(UpstreamError):
    pass


class DiscordError(UpstreamError):
    pass


class TelegramError(UpstreamError):
    pass


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """FastAPI exception handler for AppError."""
    if exc.status_code >= 500:
        logger.error(f"API Error [{exc.code.value}] {request.method} {request.url.path}: {exc.message}")
    else:
        logger.warning(f"API Error [{exc.code.value}] {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_response()})

