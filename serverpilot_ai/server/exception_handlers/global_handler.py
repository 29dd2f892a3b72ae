"""
Global Exception Handler for FastAPI Application.

This module provides a global exception handler that catches all unhandled
exceptions and logs detailed information including error ID, request context,
and full traceback for debugging purposes.

Domain errors from ``serverpilot_ai.core.errors`` get typed handlers that map
them onto HTTP status codes.
"""

import traceback
from typing import Dict, Type

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from serverpilot_ai.core.errors import (
    AuthError,
    BackendError,
    ChannelBusyError,
    ChatBusyError,
    ConnectionLostError,
    NotInitializedError,
    PlanNotFoundError,
    PlanStateError,
    PlanValidationError,
    ServerPilotError,
)
from serverpilot_ai.core.logging_config import get_logger

logger = get_logger(__name__)

# Most specific classes first; the first isinstance match wins.
DOMAIN_STATUS_CODES: Dict[Type[ServerPilotError], int] = {
    AuthError: 401,
    BackendError: 502,
    NotInitializedError: 409,
    PlanNotFoundError: 404,
    PlanValidationError: 422,
    PlanStateError: 409,
    ChannelBusyError: 409,
    ChatBusyError: 409,
    ConnectionLostError: 409,
}


def status_code_for(exc: ServerPilotError) -> int:
    for exc_type, status in DOMAIN_STATUS_CODES.items():
        if isinstance(exc, exc_type):
            return status
    return 500


async def domain_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Translate a domain error into a JSON error response.

    Args:
        request: The HTTP request that caused the exception
        exc: The domain error that was raised

    Returns:
        JSONResponse with the mapped status code and error details
    """
    if not isinstance(exc, ServerPilotError):
        return await global_exception_handler(request, exc)

    status_code = status_code_for(exc)
    if status_code == 500:
        return await global_exception_handler(request, exc)

    logger.warning(
        f"{type(exc).__name__} in {request.method} {request.url.path}: {exc}",
        extra={
            "method": request.method,
            "path": request.url.path,
            "error_type": type(exc).__name__,
            "status_code": status_code,
        },
    )
    content = {"detail": str(exc), "error_type": type(exc).__name__}
    if isinstance(exc, BackendError) and exc.status is not None:
        content["backend_status"] = exc.status
    return JSONResponse(status_code=status_code, content=content)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler to log detailed error information.

    This handler is called for any unhandled exception in the application.
    It logs the full error context and returns a JSON response with an error ID
    that clients can use to reference the error when reporting issues.

    Args:
        request: The HTTP request that caused the exception
        exc: The exception that was raised

    Returns:
        JSONResponse with error details and error ID
    """
    # Generate unique error ID for tracking
    error_id = id(exc)

    # Log the error with full context
    logger.error(
        f"Unhandled exception [{error_id}] in {request.method} {request.url.path}: {str(exc)}",
        exc_info=exc,
        extra={
            "error_id": error_id,
            "method": request.method,
            "path": request.url.path,
            "query_params": dict(request.query_params),
            "client": request.client.host if request.client else "unknown",
            "error_type": type(exc).__name__,
            "traceback": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        },
    )

    # Return error response with error ID
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error_id": error_id,
            "error_type": type(exc).__name__,
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """
    Register exception handlers with the FastAPI application.

    This function should be called during application initialization to set up
    all custom exception handlers.

    Args:
        app: The FastAPI application instance
    """
    app.add_exception_handler(ServerPilotError, domain_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
    logger.debug("Exception handlers registered successfully")
