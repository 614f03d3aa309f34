"""
Global exception handlers for FastAPI.

The idea of centralising this is to:
1. Handle logging of exceptions all in one place.
2. Control what the users sees (not too much info and no accidental leakage)
3. Less work/duplication in the routes themselves, just raise the exception and the handler makes it pretty.

Every error response has the body {"error": <message>, "type": <error type>}.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from taskhub_api.exceptions import (
    AuthenticationError,
    AuthorizationError,
    InternalError,
    TaskHubAPIException,
    UserRegistrationError,
)

logger = logging.getLogger(__name__)

GENERIC_ERROR_MSG = "Internal server error"


def error_response(exc: TaskHubAPIException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "type": exc.error_type},
        headers=exc.headers,
    )


async def authentication_error_handler(request: Request, exc: AuthenticationError):
    logger.info(f"Authentication failed for {request.method} {request.url.path}: {exc.message}")
    return error_response(exc)


async def authorization_error_handler(request: Request, exc: AuthorizationError):
    logger.info(f"Authorization failed for {request.method} {request.url.path}: {exc.message}")
    return error_response(exc)


async def user_registration_error_handler(request: Request, exc: UserRegistrationError):
    logger.warning(
        f"User registration failed for {request.method} {request.url.path}: {exc.internal_logging_message}"
    )
    return error_response(exc)


async def internal_error_handler(request: Request, exc: InternalError):
    logger.error(f"Internal error for {request.method} {request.url.path}: {exc.message}", exc_info=exc)
    return error_response(InternalError(GENERIC_ERROR_MSG))


async def taskhub_api_error_handler(request: Request, exc: TaskHubAPIException):
    """Fallback for the client error family (validation, not found, conflict)."""
    logger.warning(f"{type(exc).__name__} for {request.method} {request.url.path}: {exc.message}")
    return error_response(exc)


async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """
    Request body/query failed pydantic validation.
    Only the first error is reported back, same shape as all other errors.
    """
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:
        message = "Invalid request"
    logger.warning(f"Request validation failed for {request.method} {request.url.path}: {message}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": message, "type": "validation_error"},
    )


async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"Database error for {request.method} {request.url.path}", exc_info=exc)
    return error_response(InternalError(GENERIC_ERROR_MSG))


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error for {request.method} {request.url.path}", exc_info=exc)
    return error_response(InternalError(GENERIC_ERROR_MSG))


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register all exception handlers with FastAPI app.

    Starlette picks the handler registered for the most specific class in the exception's MRO,
    so the TaskHubAPIException handler only catches what the more specific ones do not.

    Type errors ignored (https://github.com/fastapi/fastapi/discussions/11741)
    """
    app.add_exception_handler(AuthenticationError, authentication_error_handler)  # type: ignore
    app.add_exception_handler(AuthorizationError, authorization_error_handler)  # type: ignore
    app.add_exception_handler(UserRegistrationError, user_registration_error_handler)  # type: ignore
    app.add_exception_handler(InternalError, internal_error_handler)  # type: ignore
    app.add_exception_handler(TaskHubAPIException, taskhub_api_error_handler)  # type: ignore
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)  # type: ignore
    app.add_exception_handler(SQLAlchemyError, storage_error_handler)  # type: ignore
    app.add_exception_handler(Exception, unhandled_error_handler)
