"""Conversion of contract errors into structured HTTP responses.

The validator middleware turns every ``PactumError`` it raises into an
``ErrorResponse`` through ``contract_error_response``. The exception
handlers registered by ``register_exception_handlers`` apply the same
rendering to errors raised inside endpoints, to Starlette HTTP exceptions,
to FastAPI's own parameter validation, and to unexpected exceptions.
"""

import traceback
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import Response
from loguru import logger
from starlette.exceptions import HTTPException

from src.api.schemas.errors import ErrorItem, ErrorResponse, ServiceInfo
from src.api.utils.responses import ORJSONResponse
from src.core.config import Settings, get_settings
from src.core.context import RequestContext, generate_request_id
from src.core.error_context import sanitize_error_context, sanitize_headers
from src.core.exceptions import ErrorCode, PactumError, SecurityError, Severity

_HTTP_ERROR_CODES = {
    status.HTTP_400_BAD_REQUEST: (ErrorCode.VALIDATION_ERROR, Severity.LOW),
    status.HTTP_401_UNAUTHORIZED: (ErrorCode.UNAUTHORIZED, Severity.HIGH),
    status.HTTP_403_FORBIDDEN: (ErrorCode.FORBIDDEN, Severity.HIGH),
    status.HTTP_404_NOT_FOUND: (ErrorCode.NOT_FOUND, Severity.LOW),
    status.HTTP_405_METHOD_NOT_ALLOWED: (ErrorCode.METHOD_NOT_ALLOWED, Severity.LOW),
    status.HTTP_406_NOT_ACCEPTABLE: (ErrorCode.NOT_ACCEPTABLE, Severity.LOW),
    status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: (ErrorCode.REQUEST_TOO_LARGE, Severity.LOW),
    status.HTTP_415_UNSUPPORTED_MEDIA_TYPE: (ErrorCode.UNSUPPORTED_MEDIA_TYPE, Severity.LOW),
}


def get_service_info(settings: Settings) -> ServiceInfo:
    """Create ServiceInfo from application settings.

    Args:
        settings: Application settings

    Returns:
        ServiceInfo: Instance with current service metadata
    """
    return ServiceInfo(
        name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )


def contract_error_response(request: Request, exc: PactumError) -> Response:
    """Render a contract error as an ``ErrorResponse``.

    Client errors are logged at warning level, server-side contract and
    configuration failures at error level. Security failures also log the
    request headers, with credentials redacted. Headers carried by the
    error (``Allow`` for 405) are copied onto the response.

    Args:
        request: The request that failed
        exc: The contract error

    Returns:
        Response: ORJSONResponse with the error body and status
    """
    settings = get_settings()
    correlation_id = RequestContext.get_correlation_id()

    log_context: dict[str, Any] = {
        "method": request.method,
        "path": str(request.url.path),
        "operation": RequestContext.get_operation(),
    }
    if isinstance(exc, SecurityError):
        log_context["headers"] = sanitize_headers(dict(request.headers))
    error_context = sanitize_error_context(exc, log_context)
    log = logger.error if exc.should_alert and exc.status_code >= 500 else logger.warning
    log(
        "Contract error {exception_type}: {message}",
        exception_type=type(exc).__name__,
        message=exc.message,
        status_code=exc.status_code,
        **error_context,
    )

    debug_info = None
    if settings.environment == "development" and exc.status_code >= 500:
        debug_info = {
            "stack_trace": exc.stack_trace,
            "exception_type": type(exc).__name__,
        }
        if exc.cause:
            debug_info["cause"] = {
                "type": type(exc.cause).__name__,
                "message": str(exc.cause),
            }

    error_response = ErrorResponse(
        status=exc.status_code,
        error_code=exc.error_code,
        message=exc.message,
        errors=[ErrorItem(**item.to_dict()) for item in exc.errors],
        details=exc.context or None,
        correlation_id=correlation_id,
        request_id=generate_request_id(),
        severity=exc.severity.value,
        service_info=get_service_info(settings),
        debug_info=debug_info,
    )

    return ORJSONResponse(
        status_code=exc.status_code,
        content=error_response,
        headers=exc.headers or None,
    )


async def pactum_error_handler(request: Request, exc: Exception) -> Response:
    """Handle PactumError exceptions raised inside endpoints.

    Raises:
        TypeError: If exc is not a PactumError instance
    """
    if not isinstance(exc, PactumError):
        raise TypeError(f"Expected PactumError, got {type(exc).__name__}")
    return contract_error_response(request, exc)


async def validation_error_handler(request: Request, exc: Exception) -> Response:
    """Handle FastAPI RequestValidationError exceptions.

    Endpoint signatures may declare stricter types than the contract; their
    violations are reported in the contract's 400 format.

    Raises:
        TypeError: If exc is not a RequestValidationError instance
    """
    if not isinstance(exc, RequestValidationError):
        raise TypeError(f"Expected RequestValidationError, got {type(exc).__name__}")

    settings = get_settings()
    items = [
        ErrorItem(
            path=".".join(str(part) for part in error.get("loc", ())) or "request",
            message=error.get("msg", "Invalid value"),
            error_code=f"{error.get('type', 'value')}.endpoint.validation",
        )
        for error in exc.errors()
    ]

    logger.warning(
        "Endpoint parameter validation failed",
        status_code=status.HTTP_400_BAD_REQUEST,
        **sanitize_error_context(
            exc, {"method": request.method, "path": str(request.url.path)}
        ),
    )

    error_response = ErrorResponse(
        status=status.HTTP_400_BAD_REQUEST,
        error_code=ErrorCode.VALIDATION_ERROR.value,
        message="Request validation failed",
        errors=items,
        correlation_id=RequestContext.get_correlation_id(),
        request_id=generate_request_id(),
        severity=Severity.LOW.value,
        service_info=get_service_info(settings),
    )
    return ORJSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=error_response)


async def http_exception_handler(request: Request, exc: Exception) -> Response:
    """Handle Starlette HTTPException in the contract error format.

    Raises:
        TypeError: If exc is not an HTTPException instance
    """
    if not isinstance(exc, HTTPException):
        raise TypeError(f"Expected HTTPException, got {type(exc).__name__}")

    settings = get_settings()
    error_code, severity = _HTTP_ERROR_CODES.get(
        exc.status_code,
        (
            ErrorCode.INTERNAL_ERROR,
            Severity.HIGH if exc.status_code >= 500 else Severity.MEDIUM,
        ),
    )

    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        **sanitize_error_context(
            exc,
            {"method": request.method, "path": str(request.url.path), "detail": exc.detail},
        ),
    )

    error_response = ErrorResponse(
        status=exc.status_code,
        error_code=error_code.value,
        message=str(exc.detail),
        correlation_id=RequestContext.get_correlation_id(),
        request_id=generate_request_id(),
        severity=severity.value,
        service_info=get_service_info(settings),
    )
    return ORJSONResponse(
        status_code=exc.status_code,
        content=error_response,
        headers=getattr(exc, "headers", None),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> Response:
    """Handle unexpected exceptions.

    In production, internal error details are hidden from clients.
    """
    settings = get_settings()

    logger.exception(
        "Unhandled exception: {exception_type}",
        exception_type=type(exc).__name__,
        **sanitize_error_context(
            exc, {"method": request.method, "path": str(request.url.path)}
        ),
    )

    if settings.environment == "production":
        message = "An internal server error occurred"
        debug_info = None
    else:
        message = f"Internal server error: {type(exc).__name__}"
        debug_info = {
            "stack_trace": traceback.format_tb(exc.__traceback__),
            "exception_type": type(exc).__name__,
            "error": str(exc),
        }

    error_response = ErrorResponse(
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code=ErrorCode.INTERNAL_ERROR.value,
        message=message,
        correlation_id=RequestContext.get_correlation_id(),
        request_id=generate_request_id(),
        severity=Severity.CRITICAL.value,
        service_info=get_service_info(settings),
        debug_info=debug_info,
    )
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app.

    Args:
        app: The FastAPI application instance
    """
    app.add_exception_handler(PactumError, pactum_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
