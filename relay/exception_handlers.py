"""
Error envelope for the relay's REST surface.

Push subscription and hub admin endpoints raise ``RelayException``
subclasses; FastAPI adds its own request validation failures and Starlette
its routing errors. All of them leave as:

    {"error": {"status_code", "error_code", "message", "type", "details"?, "path"}}
"""

import logging
from http import HTTPStatus
from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from relay.exceptions import ErrorCode, RelayException

logger = logging.getLogger(__name__)

# Starlette raises these itself: a missing bearer token, an unknown route, a wrong method
ROUTING_ERROR_CODES = {
    status.HTTP_401_UNAUTHORIZED: ErrorCode.AUTH_FAILED,
    status.HTTP_404_NOT_FOUND: ErrorCode.RESOURCE_NOT_FOUND,
    status.HTTP_405_METHOD_NOT_ALLOWED: ErrorCode.VALIDATION_FAILED,
}


def get_error_type(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


def create_error_response(
    status_code: int,
    message: str,
    error_code: ErrorCode,
    details: dict[str, Any] | None = None,
    path: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    error: dict[str, Any] = {
        "status_code": status_code,
        "error_code": error_code.value,
        "message": message,
        "type": get_error_type(status_code),
    }
    if details:
        error["details"] = details
    if path:
        error["path"] = path
    return JSONResponse(status_code=status_code, content={"error": error}, headers=headers)


async def relay_exception_handler(request: Request, exc: RelayException) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log(f"{exc.error_code.value} on {request.url.path}: {exc.message}")
    return create_error_response(exc.status_code, exc.message, exc.error_code, exc.details, request.url.path)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    logger.info(f"HTTP {exc.status_code} on {request.url.path}: {exc.detail}")
    return create_error_response(
        exc.status_code,
        str(exc.detail),
        ROUTING_ERROR_CODES.get(exc.status_code, ErrorCode.UNKNOWN_ERROR),
        path=request.url.path,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Flatten FastAPI's error list into ``field``/``message`` pairs; ``body`` is dropped from locations."""
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"] if loc != "body"),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.info(f"Rejected request to {request.url.path}: {errors}")
    return create_error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error",
        ErrorCode.VALIDATION_FAILED,
        {"validation_errors": errors},
        request.url.path,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc!r}", exc_info=True)
    return create_error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected error occurred. Please try again later.",
        ErrorCode.INTERNAL_ERROR,
        path=request.url.path,
    )


def register_exception_handlers(app) -> None:
    app.add_exception_handler(RelayException, relay_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
