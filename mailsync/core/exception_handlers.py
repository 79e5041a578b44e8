"""Centralized exception handlers for the FastAPI app.

Register with register_exception_handlers(app). Maps domain, provider and
framework exceptions to HTTP responses.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from mailsync.core.config import get_settings
from mailsync.domain.exceptions import MailSyncException

logger = logging.getLogger(__name__)

# Map domain error_code to HTTP status when applicable
_ERROR_CODE_STATUS: dict[str, int] = {
    "RESOURCE_NOT_FOUND": 404,
    "ACCOUNT_NOT_FOUND": 404,
    "SUBSCRIPTION_NOT_FOUND": 404,
    "VALIDATION_ERROR": 400,
    "EMAIL_NORMALIZATION_ERROR": 422,
    "UNSUPPORTED_PROVIDER": 400,
    "WEBHOOKS_NOT_SUPPORTED": 400,
    "CREDENTIAL_ERROR": 409,
    "ACCOUNT_REQUIRES_REAUTH": 409,
    "PROVIDER_AUTH_ERROR": 401,
    "CURSOR_EXPIRED": 409,
    "PROVIDER_ERROR": 502,
    "PROVIDER_TRANSIENT_ERROR": 503,
    "SYNC_RETRY_EXHAUSTED": 503,
    "SERVICE_UNAVAILABLE": 503,
}


def _mailsync_exception_handler(request: Request, exc: MailSyncException) -> JSONResponse:
    """Return JSON from MailSyncException.to_dict() with appropriate status code."""
    status = _ERROR_CODE_STATUS.get(exc.error_code, 400)
    if status >= 500:
        logger.warning("%s on %s: %s", exc.error_code, request.url.path, exc.message)
    return JSONResponse(status_code=status, content=exc.to_dict())


def _validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return 422 with validation error details."""
    return JSONResponse(
        status_code=422,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": exc.errors(),
        },
    )


def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return JSON for Starlette HTTP exceptions (status + detail)."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": "HTTP_ERROR", "message": exc.detail},
    )


def _generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return 500; include detail only when debug is True."""
    logger.exception("Unhandled exception: %s", exc)
    settings = get_settings()
    detail: Any = str(exc) if settings.debug else "Internal server error"
    return JSONResponse(
        status_code=500,
        content={"error": "INTERNAL_ERROR", "message": detail},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app.

    Handlers: MailSyncException (and subclasses, provider errors included),
    RequestValidationError, StarletteHTTPException, generic Exception.
    """
    app.add_exception_handler(MailSyncException, _mailsync_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(Exception, _generic_exception_handler)
