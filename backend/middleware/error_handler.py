"""
Error Handler Middleware
Maps price service failures onto JSON error bodies.

Every body has the same shape: ``{error, message, details, path, method}``.
Bad symbols and malformed payloads are client mistakes and log at INFO; an
upstream refusing a subscription logs at WARNING; anything else is ours and
logs at ERROR.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.errors import (
    CryptoVisionError, SubscriptionRejectedError, ValidationError,
    create_http_exception, sanitize_error_message
)

logger = logging.getLogger(__name__)


def _error_body(request: Request, code: str, message: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "error": code,
        "message": sanitize_error_message(message),
        "details": details or {},
        "path": request.url.path,
        "method": request.method,
    }


async def symbol_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Symbols the upstream cannot subscribe to."""
    logger.info(f"Rejected symbol on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body(request, exc.error_code, exc.message, exc.details)
    )


async def subscription_rejected_handler(request: Request, exc: SubscriptionRejectedError) -> JSONResponse:
    logger.warning(f"Upstream refused subscription ({request.url.path}): {exc.message} {exc.details}")
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content=_error_body(request, exc.error_code, exc.message, exc.details)
    )


async def service_error_handler(request: Request, exc: CryptoVisionError) -> JSONResponse:
    """Remaining service errors (configuration and friends)."""
    http_exc = create_http_exception(exc)
    logger.error(f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=http_exc.status_code,
        content=_error_body(request, exc.error_code, exc.message, exc.details)
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Payloads that do not match LivePriceInput and friends."""
    problems = [
        {"loc": list(err.get("loc", [])), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    logger.info(f"Invalid request on {request.method} {request.url.path}: {problems}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body(request, "VALIDATION_ERROR", "Request validation failed", {"validation_errors": problems})
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Unknown routes and wrong methods
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, "HTTP_ERROR", str(exc.detail)),
        headers=getattr(exc, "headers", None)
    )


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(request, "INTERNAL_ERROR", "An unexpected error occurred")
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the price service handlers; the most specific class wins."""
    app.add_exception_handler(ValidationError, symbol_validation_handler)
    app.add_exception_handler(SubscriptionRejectedError, subscription_rejected_handler)
    app.add_exception_handler(CryptoVisionError, service_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
