"""Exception handlers mapping domain and store errors to JSON responses."""

from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from starlette.exceptions import HTTPException as StarletteHTTPException

from services.errors import RateLimited, ServiceError, UpstreamUnavailable, ValidationError

logger = logging.getLogger(__name__)

STORE_UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError, asyncio.TimeoutError)


def _render(error: ServiceError) -> JSONResponse:
    headers = None
    if isinstance(error, RateLimited):
        headers = {"Retry-After": str(error.retry_after)}
    return JSONResponse(status_code=error.status_code, content=error.to_dict(), headers=headers)


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.error, exc.message)
    return _render(exc)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request.")
    return _render(ValidationError(f"{location}: {message}" if location else message))


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": "http_error", "detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def store_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Store unavailable on %s %s: %s", request.method, request.url.path, exc)
    return _render(UpstreamUnavailable())


async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Store error on %s %s", request.method, request.url.path)
    return _render(ServiceError())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    for error_type in STORE_UNAVAILABLE_ERRORS:
        app.add_exception_handler(error_type, store_unavailable_handler)
    app.add_exception_handler(SQLAlchemyError, store_error_handler)
