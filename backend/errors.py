"""
Error taxonomy and the handlers that render it.

Every failure reaches the client as ``{"error": "<message>"}``; stack traces
only go to the server log.
"""
import logging

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors with a client-safe message and HTTP status"""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "invalid request"


class AuthError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid token"


class MissingToken(AuthError):
    default_message = "Missing token"


class InvalidToken(AuthError):
    default_message = "Invalid token"


class UnknownUser(AuthError):
    default_message = "Invalid token (user not found)"


class InvalidCredentials(AuthError):
    default_message = "invalid credentials"


class TokenError(AuthError):
    """Raised by the credential codec when a token does not verify"""


class ExpiredToken(TokenError):
    default_message = "Token expired"


class InvalidSignature(TokenError):
    default_message = "Invalid token"


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "conflict"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "not found"


class StoreError(AppError):
    """Document could not be read or written"""

    default_message = "Storage error"


class StoreCorrupt(StoreError):
    default_message = "Storage error"


def _error_response(status_code: int, message: str, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content={"error": message}, headers=headers
    )


async def app_error_handler(request: Request, exc: AppError):
    """Domain error handler"""
    if isinstance(exc, StoreError):
        logger.error(
            "Storage failure on %s %s: %r", request.method, request.url.path, exc
        )
        # Detail stays in the log, the client gets the generic message
        return _error_response(exc.status_code, StoreError.default_message)
    headers = None
    if isinstance(exc, AuthError):
        headers = {"WWW-Authenticate": "Bearer"}
    return _error_response(exc.status_code, exc.message, headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Framework HTTP errors (unknown routes, wrong methods)"""
    return _error_response(
        exc.status_code, str(exc.detail), getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Request validation exception handler"""
    logger.debug("Rejected request body on %s: %s", request.url.path, exc.errors())
    return _error_response(status.HTTP_400_BAD_REQUEST, "invalid request")


async def python_exception_handler(request: Request, exc: Exception):
    """Python exception handler

    Starlette re-raises the exception after this response is sent and the
    server logs the traceback then, so nothing is logged here.
    """
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server error")
