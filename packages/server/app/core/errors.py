"""
Application error taxonomy and the JSON error envelope.

Every failure leaving the API is rendered as
{"error": {"code": <kind>, "message": <str>, "status": <int>}}.
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import (
    DBAPIError,
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)
from starlette.exceptions import HTTPException as StarletteHTTPException

from orgboard_shared.schemas.common import ErrorBody, ErrorKind, ErrorResponse

log = structlog.get_logger()


class AppError(Exception):
    """Base class for classified, recoverable failures."""

    kind: ErrorKind = ErrorKind.UNKNOWN
    status_code: int = 500
    default_message: str = "Something went wrong"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return _envelope_body(self.kind, self.message, self.status_code)


class AuthenticationRequired(AppError):
    kind = ErrorKind.AUTHENTICATION_REQUIRED
    status_code = 401
    default_message = "Authentication required"


class PermissionDenied(AppError):
    kind = ErrorKind.PERMISSION_DENIED
    status_code = 403
    default_message = "You do not have permission to perform this action"


class ValidationFailed(AppError):
    kind = ErrorKind.VALIDATION_FAILED
    status_code = 422
    default_message = "Invalid input provided"


class NotFound(AppError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404
    default_message = "Not found"


class InvitationNotFound(NotFound):
    """Unknown, consumed, revoked and expired tokens all look the same."""

    default_message = "Invitation not found"


class Conflict(AppError):
    kind = ErrorKind.CONFLICT
    status_code = 409
    default_message = "Conflicting state"


class SlugConflict(Conflict):
    default_message = "An organization with this slug already exists"


class AlreadyMember(Conflict):
    default_message = "You are already a member of this organization"


class StorageUnavailable(AppError):
    kind = ErrorKind.STORAGE_UNAVAILABLE
    status_code = 503
    default_message = "Storage is temporarily unavailable"


class UnknownError(AppError):
    kind = ErrorKind.UNKNOWN
    status_code = 500


def classify_storage_error(exc: SQLAlchemyError, *, action: str) -> AppError:
    """Map a SQLAlchemy failure onto the taxonomy.

    Integrity violations become Conflict, lost/refused connections become
    StorageUnavailable, everything else Unknown.
    """
    if isinstance(exc, IntegrityError):
        error: AppError = Conflict()
    elif isinstance(
        exc, (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError)
    ):
        error = StorageUnavailable()
    elif isinstance(exc, DBAPIError) and exc.connection_invalidated:
        error = StorageUnavailable()
    else:
        error = UnknownError()

    log.warning(
        "storage.error",
        action=action,
        kind=error.kind.value,
        error_type=type(exc).__name__,
    )
    return error


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

_HTTP_STATUS_KINDS = {
    401: ErrorKind.AUTHENTICATION_REQUIRED,
    403: ErrorKind.PERMISSION_DENIED,
    404: ErrorKind.NOT_FOUND,
    409: ErrorKind.CONFLICT,
    422: ErrorKind.VALIDATION_FAILED,
    503: ErrorKind.STORAGE_UNAVAILABLE,
}


def _envelope_body(kind: ErrorKind, message: str, status: int) -> dict:
    body = ErrorBody(code=kind, message=message, status=status)
    return ErrorResponse(error=body).model_dump(mode="json")


def _envelope(kind: ErrorKind, message: str, status: int) -> JSONResponse:
    return JSONResponse(status_code=status, content=_envelope_body(kind, message, status))


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = ValidationFailed.default_message
    return _envelope(ErrorKind.VALIDATION_FAILED, message, 422)


async def http_error_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    kind = _HTTP_STATUS_KINDS.get(exc.status_code, ErrorKind.UNKNOWN)
    return _envelope(kind, str(exc.detail), exc.status_code)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("http.unhandled_error", path=request.url.path)
    return _envelope(ErrorKind.UNKNOWN, UnknownError.default_message, 500)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
