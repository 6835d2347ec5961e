"""
Domain exceptions and their HTTP rendering
"""
import logging
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors that carry a user-facing reason and HTTP status"""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, reason: str, status_code: Optional[int] = None):
        super().__init__(reason)
        self.reason = reason
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AppError):
    """Malformed input the caller can correct"""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND


class InvalidRedemption(AppError):
    """Promo code invalid, expired, exhausted or already used by this account"""

    status_code = status.HTTP_400_BAD_REQUEST


class ConcurrencyConflict(AppError):
    """A conditional write kept losing to concurrent writers"""

    status_code = status.HTTP_409_CONFLICT


class UpstreamUnavailable(AppError):
    """Payment, push or storage provider failed or timed out"""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class AccountResolutionFailure(AppError):
    """Payment event references a customer with no mapped account"""

    status_code = status.HTTP_200_OK


class SignatureInvalid(AppError):
    """Webhook payload failed signature verification"""

    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED


class PermissionDenied(AppError):
    status_code = status.HTTP_403_FORBIDDEN


async def app_error_handler(request: Request, exc: AppError):
    """Render domain errors as {"success": false, "error": reason}"""
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__} on {request.url.path}: {exc.reason}")
    else:
        logger.warning(f"{exc.__class__.__name__} on {request.url.path}: {exc.reason}")
    headers = None
    if isinstance(exc, AuthenticationError):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.reason},
        headers=headers,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError):
    """422 in the same envelope; pydantic's ctx can hold the raised exception, so it is dropped"""
    errors = [{key: value for key, value in error.items() if key != "ctx"} for error in exc.errors()]
    logger.error(f"Validation error on {request.url.path}: {errors}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"success": False, "error": "Validation failed", "detail": errors},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the domain and request validation error handlers to an app instance"""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
