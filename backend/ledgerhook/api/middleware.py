"""Middleware and exception handlers for the FastAPI application.

The webhook endpoint maps processing outcomes to status codes itself. What reaches these
handlers is either a request that never got that far or a bug; for Stripe any non-2xx
response means the event is delivered again later.
"""

import time
import traceback
import uuid
from typing import Union

from fastapi import Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ledgerhook.core.config import settings
from ledgerhook.core.exceptions import (
    AuthenticationError,
    InvariantViolation,
    LedgerhookException,
    NotFoundException,
    TransientStorageError,
    unpack_validation_error,
)
from ledgerhook.core.logging import logger

REQUEST_ID_HEADER = "X-Request-ID"

# Status codes of domain exceptions raised outside the webhook endpoint
EXCEPTION_STATUS_CODES = {
    AuthenticationError: 400,
    NotFoundException: 404,
    InvariantViolation: 409,
    TransientStorageError: 503,
}


async def add_request_id(request: Request, call_next: callable) -> Response:
    """Middleware to generate a request ID, store it on the request and echo it back.

    Args:
    ----
        request (Request): The incoming request.
        call_next (callable): The next middleware in the chain.

    Returns:
    -------
        Response: The response, carrying the ``X-Request-ID`` header.

    """
    request.state.request_id = str(uuid.uuid4())
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request.state.request_id
    return response


async def log_requests(request: Request, call_next: callable) -> Response:
    """Middleware to log every request with its duration and status code."""
    start_time = time.monotonic()
    response = await call_next(request)
    logger.with_context(request_id=getattr(request.state, "request_id", "")).info(
        f"{request.method} {request.url.path} -> {response.status_code} "
        f"in {time.monotonic() - start_time:.3f}s"
    )
    return response


async def exception_logging_middleware(request: Request, call_next: callable) -> Response:
    """Middleware to log unhandled exceptions and answer them with a 500.

    Stripe treats the 500 like any other failure and redelivers the event.
    """
    try:
        return await call_next(request)
    except Exception as exc:
        trace = traceback.format_exc()
        logger.with_context(request_id=getattr(request.state, "request_id", "")).error(
            f"Unhandled exception on {request.method} {request.url.path}: {exc}\n{trace}"
        )

        content = {"detail": f"Internal Server Error: {exc.__class__.__name__}: {exc}"}
        if settings.LOCAL_DEVELOPMENT or settings.DEBUG:
            content["trace"] = trace
        return JSONResponse(status_code=500, content=content)


async def validation_exception_handler(
    request: Request, exc: Union[RequestValidationError, ValidationError]
) -> JSONResponse:
    """Exception handler for request and model validation errors.

    Returns:
    -------
        JSONResponse: 422 with one entry per invalid field,
            e.g. ``{"errors": [{"body.tenant_id": "Field required"}]}``.

    """
    error_messages = unpack_validation_error(exc)
    logger.error(f"Validation error: {error_messages}")
    return JSONResponse(status_code=422, content=error_messages)


async def not_found_exception_handler(request: Request, exc: NotFoundException) -> JSONResponse:
    """Exception handler for NotFoundException."""
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def ledgerhook_exception_handler(
    request: Request, exc: LedgerhookException
) -> JSONResponse:
    """Exception handler for every other LedgerhookException.

    Returns:
    -------
        JSONResponse: Status from ``EXCEPTION_STATUS_CODES``, 500 for anything unmapped.

    """
    status_code = EXCEPTION_STATUS_CODES.get(type(exc), 500)
    if status_code >= 500:
        logger.error(f"{exc.__class__.__name__} on {request.url.path}: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})
