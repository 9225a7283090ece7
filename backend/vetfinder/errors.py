"""
Error taxonomy for the scheduling core and its HTTP mapping.

Every failure carries a machine-readable ``code`` so a client can tell
"slot taken" (re-fetch availability) apart from "bad input" (show a field
error). Routes raise these; ``register_exception_handlers`` renders them.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class BookingError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "internal_error"

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code


class ValidationError(BookingError):
    """Malformed date / duration / price, missing required field."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_input"


class ScheduleFormatError(ValidationError):
    """Opening-hours entry with a malformed or inverted time."""
    code = "schedule_format"


class InvalidTransition(ValidationError):
    """Status change not allowed from the current state."""
    code = "invalid_transition"


class NotFound(BookingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class AuthorizationError(BookingError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"

    @classmethod
    def unauthenticated(cls, message: str = "Authentication required") -> "AuthorizationError":
        return cls(message, code="unauthenticated", status_code=status.HTTP_401_UNAUTHORIZED)


class SlotConflict(BookingError):
    """Requested interval is no longer free at commit time."""
    status_code = status.HTTP_409_CONFLICT
    code = "slot_taken"


class InternalError(BookingError):
    pass


def error_body(code: str, message: str) -> dict:
    return {"success": False, "error": {"code": code, "message": message}}


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.code, exc.message))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg", "Invalid request")
    if location:
        message = f"{location}: {message}"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(ValidationError.code, message),
    )


async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception(f"Storage failure on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=InternalError.status_code,
        content=error_body(InternalError.code, "Storage failure"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingError, booking_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(SQLAlchemyError, storage_error_handler)
