"""
Error handling and sanitization

- PartedEuroError subclasses map to stable HTTP statuses and JSON bodies
- Shipping failures surface to the buyer as a single friendly message
- Unhandled exceptions are logged in full and returned sanitized
"""
import logging
import traceback
from typing import Union

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from partedeuro.core.config import settings
from partedeuro.core.exceptions import (
    CheckoutError,
    InvalidStatusTransitionError,
    InventoryError,
    ListingNotFoundError,
    OrderNotFoundError,
    PartedEuroError,
    ProviderError,
    SettlementError,
    ShippingUnavailable,
    XeroError,
    XeroNotConnectedError,
)

logger = logging.getLogger(__name__)

SHIPPING_FAILURE_MESSAGE = "Unable to calculate shipping for this destination"

# Most specific classes first
STATUS_BY_ERROR = [
    (ListingNotFoundError, 404),
    (OrderNotFoundError, 404),
    (InvalidStatusTransitionError, 409),
    (ShippingUnavailable, 422),
    (ProviderError, 502),
    (XeroNotConnectedError, 503),
    (XeroError, 502),
    (SettlementError, 502),
    (InventoryError, 409),
    (CheckoutError, 502),
]

SENSITIVE_PATTERNS = [
    "password",
    "secret",
    "token",
    "key",
    "credential",
    "sqlalchemy",
    "asyncpg",
    "postgresql",
    "traceback",
    "file \"",
]


def is_sensitive_error(message: str) -> bool:
    message_lower = message.lower()
    return any(pattern in message_lower for pattern in SENSITIVE_PATTERNS)


def sanitize_error_message(error: Union[str, Exception]) -> str:
    """Sanitize an error message for safe client exposure."""
    message = error if isinstance(error, str) else str(error)

    if settings.DEBUG:
        return message

    if is_sensitive_error(message):
        return "An internal error occurred. Please try again later."

    if len(message) > 200:
        return message[:200] + "..."

    return message


def status_for_error(exc: PartedEuroError) -> int:
    for error_cls, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status_code
    return 500


async def parted_euro_error_handler(request: Request, exc: PartedEuroError) -> JSONResponse:
    status_code = status_for_error(exc)

    if isinstance(exc, (ShippingUnavailable, ProviderError)):
        message = SHIPPING_FAILURE_MESSAGE
    else:
        message = sanitize_error_message(exc.message)

    log = logger.error if status_code >= 500 else logger.info
    log(f"{exc.__class__.__name__} on {request.method} {request.url.path}: {exc.message} ({exc.code})")

    content = {"error": exc.code, "message": message}
    if settings.DEBUG:
        content["details"] = exc.details
    return JSONResponse(status_code=status_code, content=content)


class ErrorSanitizationMiddleware(BaseHTTPMiddleware):
    """
    Catch unhandled exceptions and sanitize error responses.

    - In production: Returns generic error, logs full details
    - In development: Returns full error for debugging
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except HTTPException:
            raise
        except Exception as e:
            error_id = f"{request.client.host if request.client else 'unknown'}-{id(e)}"
            logger.error(
                f"Unhandled exception [{error_id}]: {type(e).__name__}: {str(e)}\n"
                f"Path: {request.url.path}\n"
                f"Method: {request.method}\n"
                f"Traceback:\n{traceback.format_exc()}"
            )

            if settings.DEBUG:
                return JSONResponse(
                    status_code=500,
                    content={
                        "error": "internal_error",
                        "message": str(e),
                        "type": type(e).__name__,
                        "error_id": error_id,
                    }
                )
            return JSONResponse(
                status_code=500,
                content={
                    "error": "internal_error",
                    "message": "An unexpected error occurred. Please try again later.",
                    "error_id": error_id,
                }
            )


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(PartedEuroError, parted_euro_error_handler)
    app.add_middleware(ErrorSanitizationMiddleware)
