"""
Global error handling middleware.

WHAT: Translate exceptions to appropriate HTTP responses
WHY: Consistent error responses with proper status codes
HOW: FastAPI exception handlers for business exceptions and request validation
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from datetime import datetime

from ..utils.exceptions import (
    BusinessException,
    BackendSyncError,
    CounterLimitReachedError,
    OfferNotFoundError,
    OfferTransitionError,
    OfferValidationError,
    SessionAlreadyActiveError,
    SessionNotFoundError,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """
    Handle FastAPI RequestValidationError.

    WHAT: Request validation failed
    WHY: Invalid request payload
    HOW: Return 400 with field errors
    """
    logger.warning(f"Validation error: {exc.errors()}")

    # Clean up error details to be JSON serializable
    cleaned_errors = []
    for error in exc.errors():
        cleaned_error = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
            "input": error.get("input")
        }
        # Convert ctx errors to strings
        if "ctx" in error:
            cleaned_error["ctx"] = {
                k: str(v) if isinstance(v, Exception) else v
                for k, v in error["ctx"].items()
            }
        cleaned_errors.append(cleaned_error)

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": cleaned_errors,
            "timestamp": datetime.now().isoformat()
        }
    )


def status_code_for(exc: BusinessException) -> int:
    """Map a business exception onto its HTTP status code."""
    if isinstance(exc, (OfferNotFoundError, SessionNotFoundError)):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, OfferTransitionError):
        # No current status means the offer does not exist
        return status.HTTP_404_NOT_FOUND if exc.status is None else status.HTTP_409_CONFLICT
    if isinstance(exc, (CounterLimitReachedError, SessionAlreadyActiveError)):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, BackendSyncError):
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(exc, OfferValidationError):
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_400_BAD_REQUEST


async def business_exception_handler(request: Request, exc: BusinessException):
    """
    Handle BusinessException and subclasses.

    WHAT: Rejected negotiation command
    WHY: Expected, recoverable condition the client renders (e.g. limit reached)
    HOW: Return mapped status code with error code, message and details
    """
    status_code = status_code_for(exc)
    logger.warning(f"Business exception: {exc.code} - {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={
            "error": exc.code,
            "message": exc.message,
            "details": exc.details,
            "timestamp": datetime.now().isoformat()
        }
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    """
    Handle any exception no other handler claimed.

    WHAT: Unexpected server failure
    WHY: Clients still get the standard error body
    HOW: Log with traceback, return 500
    """
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "INTERNAL_ERROR",
            "message": "Internal server error",
            "details": None,
            "timestamp": datetime.now().isoformat()
        }
    )


def register_exception_handlers(app):
    """
    Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(BusinessException, business_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    logger.info("Exception handlers registered")
