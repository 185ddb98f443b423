"""Service errors and the handlers that render them as consistent JSON responses."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar, cast

from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from courier_escrow_service.logging import get_logger

if TYPE_CHECKING:
    from fastapi import FastAPI, Request
    from starlette.types import ExceptionHandler


class ServiceError(Exception):
    """
    Error raised by the service layer.

    Carries a machine-readable error code, a human-readable message,
    the HTTP status to respond with, and optional structured details.
    """

    kind: ClassVar[str] = "internal"

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error = error
        self.message = message
        self.status_code = status_code
        self.details = details if details is not None else {}


class ValidationFailed(ServiceError):
    """Missing or invalid input. Raised before any state is touched."""

    kind = "validation"


class Unauthorized(ServiceError):
    """No valid session."""

    kind = "authorization"


class Forbidden(ServiceError):
    """The session's role or identity does not permit the action."""

    kind = "authorization"


class NotFound(ServiceError):
    kind = "not_found"


class StateConflict(ServiceError):
    """The operation's precondition on current status does not hold."""

    kind = "state_conflict"


class FinancialIntegrityError(ServiceError):
    """A write would break a ledger invariant (e.g. a second hold for one job)."""

    kind = "financial_integrity"


class UpstreamUnavailable(ServiceError):
    """A downstream collaborator (e.g. the notification dispatcher) failed."""

    kind = "upstream"


async def service_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle ServiceError exceptions."""
    error = cast("ServiceError", exc)
    logger = get_logger(__name__)
    logger.warning(
        "Service error",
        extra={
            "error_code": error.error,
            "kind": error.kind,
            "status_code": error.status_code,
            "path": str(request.url.path),
        },
    )
    return JSONResponse(
        status_code=error.status_code,
        content={
            "error": error.error,
            "kind": error.kind,
            "message": error.message,
            "details": error.details,
        },
    )


async def unhandled_exception_handler(request: Request, _exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger = get_logger(__name__)
    logger.exception("Unhandled exception", extra={"path": str(request.url.path)})
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "kind": "internal",
            "message": "An unexpected error occurred",
            "details": {},
        },
    )


async def http_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
    """Handle Starlette HTTP exceptions (e.g., 404/405 from the router)."""
    http_exc = cast("StarletteHTTPException", exc)
    if http_exc.status_code == 405:
        return JSONResponse(
            status_code=405,
            content={
                "error": "METHOD_NOT_ALLOWED",
                "kind": "validation",
                "message": "Method not allowed",
                "details": {},
            },
        )
    return JSONResponse(
        status_code=http_exc.status_code,
        content={
            "error": "HTTP_ERROR",
            "kind": "validation",
            "message": str(http_exc.detail),
            "details": {},
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the app."""
    app.add_exception_handler(ServiceError, cast("ExceptionHandler", service_error_handler))
    app.add_exception_handler(
        StarletteHTTPException,
        cast("ExceptionHandler", http_exception_handler),
    )
    app.add_exception_handler(Exception, cast("ExceptionHandler", unhandled_exception_handler))
