"""Middleware and exception handlers of the FastAPI application."""

import time
import traceback
import uuid
from typing import Union

from fastapi import Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from seatsync.core.config import settings
from seatsync.core.exceptions import (
    AuthenticationError,
    ConcurrentModificationError,
    ExternalServiceError,
    InvalidStateError,
    NotApplicableError,
    NotFoundException,
    ProviderRejectedError,
    ProviderUnavailableError,
    SeatSyncException,
    UnsupportedBillingTypeError,
    ValidationError as SeatSyncValidationError,
    WebhookDispatchError,
    unpack_validation_error,
)
from seatsync.core.logging import logger

# Most specific classes first; the first match in the exception's MRO wins
STATUS_CODE_MAP: dict[type[SeatSyncException], int] = {
    NotFoundException: 404,
    SeatSyncValidationError: 400,
    InvalidStateError: 400,
    UnsupportedBillingTypeError: 400,
    NotApplicableError: 409,
    ConcurrentModificationError: 409,
    AuthenticationError: 401,
    ProviderRejectedError: 502,
    ProviderUnavailableError: 503,
    ExternalServiceError: 502,
    WebhookDispatchError: 500,
}


async def add_request_id(request: Request, call_next: callable) -> Response:
    """Middleware to generate and add a request ID to the request for tracing.

    Args:
    ----
        request (Request): The incoming request.
        call_next (callable): The next middleware in the chain.

    Returns:
    -------
        Response: The response to the incoming request.

    """
    request.state.request_id = str(uuid.uuid4())
    response = await call_next(request)
    response.headers["X-Request-ID"] = request.state.request_id
    return response


async def log_requests(request: Request, call_next: callable) -> Response:
    """Middleware to log incoming requests.

    Args:
    ----
        request (Request): The incoming request.
        call_next (callable): The next middleware in the chain.

    Returns:
    -------
        Response: The response to the incoming request.

    """
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time
    logger.info(
        f"Handled request {request.method} {request.url.path} in {duration:.2f} seconds. "
        f"Response code: {response.status_code}"
    )
    return response


async def exception_logging_middleware(request: Request, call_next: callable) -> Response:
    """Middleware to log unhandled exceptions.

    Args:
    ----
        request (Request): The incoming request.
        call_next (callable): The next middleware in the chain.

    Returns:
    -------
        Response: The response to the incoming request.

    """
    try:
        return await call_next(request)
    except Exception as exc:
        logger.error(f"Unhandled exception: {exc}\n{traceback.format_exc()}")

        response_content = {
            "detail": f"Internal Server Error: {exc.__class__.__name__}: {str(exc)}",
            "error": "InternalServerError",
            "retryable": False,
        }
        if settings.LOCAL_DEVELOPMENT:
            response_content["trace"] = traceback.format_exc()

        return JSONResponse(status_code=500, content=response_content)


async def validation_exception_handler(
    request: Request, exc: Union[RequestValidationError, ValidationError]
) -> JSONResponse:
    """Exception handler for request bodies that fail schema validation.

    Args:
    ----
        request (Request): The incoming request that triggered the exception.
        exc (Union[RequestValidationError, ValidationError]): The exception object that was raised.

    Returns:
    -------
        JSONResponse: A 422 Unprocessable Entity response listing each invalid field.

    Example of JSON output:
        {
            "errors": [
                {"body.new_quantity": "Input should be greater than or equal to 1"}
            ]
        }

    """
    error_messages = unpack_validation_error(exc)
    logger.warning(f"Validation error on {request.method} {request.url.path}: {error_messages}")
    return JSONResponse(status_code=422, content=error_messages)


def status_code_for(exc: SeatSyncException) -> int:
    """HTTP status of a domain exception, resolved through its class hierarchy."""
    for cls in type(exc).__mro__:
        if cls in STATUS_CODE_MAP:
            return STATUS_CODE_MAP[cls]
    return 500


async def seatsync_exception_handler(request: Request, exc: SeatSyncException) -> JSONResponse:
    """Generic exception handler for all SeatSyncException types.

    Args:
    ----
        request (Request): The incoming request that triggered the exception.
        exc (SeatSyncException): The exception object that was raised.

    Returns:
    -------
        JSONResponse: Response with the mapped status code, the error class name and
            whether the caller may retry.

    """
    status_code = status_code_for(exc)
    content = {
        "detail": str(exc),
        "error": type(exc).__name__,
        "retryable": exc.retryable,
    }
    if isinstance(exc, ProviderRejectedError):
        content["provider_status_code"] = exc.status_code
        content["provider_errors"] = exc.errors

    if status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc}")
    else:
        logger.info(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc}")

    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(status_code=status_code, content=content, headers=headers)
