"""
pollvault/errors.py
Centralized API error contract.

ERROR RESPONSE STRUCTURE:
{
    "success": false,
    "error": "ErrorType",
    "message": "Human-readable description",
    "code": "UNIQUE_ERROR_CODE",
    "details": {} (optional)
}

HTTP STATUS CODE DISCIPLINE:
- 400: Invalid ballot or configuration
- 403: Ballot outside the poll window, role or electorate
- 404: Resource does not exist
- 409: Lifecycle guard, concurrency or integrity conflict
- 422: Request body validation (Pydantic)
- 429: Rate limit exceeded
- 500: Never caused by user input
"""
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from pollvault.exceptions import IntegrityError, VotingError

logger = logging.getLogger(__name__)


class ErrorCode:
    """Unique error codes for machine-readable error handling"""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"

    OUT_OF_WINDOW = "OUT_OF_WINDOW"
    ROLE_NOT_ALLOWED = "ROLE_NOT_ALLOWED"
    SEQUENCE_VIOLATION = "SEQUENCE_VIOLATION"
    UNKNOWN_VOTER = "UNKNOWN_VOTER"
    SELF_VOTE_FORBIDDEN = "SELF_VOTE_FORBIDDEN"
    INVALID_BALLOT_SHAPE = "INVALID_BALLOT_SHAPE"
    CONCURRENT_SUBMISSION = "CONCURRENT_SUBMISSION"

    STATUS_TRANSITION_DENIED = "STATUS_TRANSITION_DENIED"
    QUORUM_NOT_MET = "QUORUM_NOT_MET"
    TIE_BREAKER_CONFLICT = "TIE_BREAKER_CONFLICT"
    INVALID_CONFIGURATION = "INVALID_CONFIGURATION"
    RESULTS_NOT_PUBLIC = "RESULTS_NOT_PUBLIC"

    INTEGRITY_MISMATCH = "INTEGRITY_MISMATCH"
    EXTERNAL_REFERENCE_LOCKED = "EXTERNAL_REFERENCE_LOCKED"

    SUBMISSIONS_LOCKED = "SUBMISSIONS_LOCKED"

    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorResponse(BaseModel):
    """Standard error response model"""
    success: bool = False
    error: str
    message: str
    code: str
    details: Optional[Dict[str, Any]] = None


def error_content(error: str, message: str, code: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    content = ErrorResponse(error=error, message=message, code=code, details=details or None)
    return content.model_dump(exclude_none=True)


def voting_error_response(exc: VotingError) -> JSONResponse:
    """Convert a domain exception into the API error contract."""
    error = "Integrity Failure" if isinstance(exc, IntegrityError) else type(exc).__name__.replace("Error", "")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_content(error, exc.message, exc.code, exc.details),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the pollvault error contract to a FastAPI application."""

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        # Operators must see these; they imply tampering, not user error
        logger.critical(f"Integrity failure on {request.url.path}: {exc.code} - {exc.details}")
        return voting_error_response(exc)

    @app.exception_handler(VotingError)
    async def voting_error_handler(request: Request, exc: VotingError):
        logger.warning(f"Voting error on {request.url.path}: {exc.code} - {exc.message}")
        return voting_error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")
        error_details = [
            {"loc": list(error.get("loc", [])), "msg": error.get("msg"), "type": error.get("type")}
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=error_content(
                "Validation Error",
                "Request body failed validation",
                ErrorCode.VALIDATION_ERROR,
                {"errors": error_details},
            ),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        log_id = str(uuid.uuid4())[:8]
        logger.error(f"[{log_id}] Unhandled exception on {request.url.path}: {type(exc).__name__}: {str(exc)}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_content(
                "Internal Error",
                "An unexpected error occurred. Please try again later.",
                ErrorCode.INTERNAL_ERROR,
                {"log_id": log_id},
            ),
        )
