"""
Error handling middleware: turns exceptions into the JSON error envelope.
"""

import logging
import traceback
from datetime import datetime, timezone
from uuid import uuid4

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as SQLTimeoutError
from pydantic import ValidationError as PydanticValidationError

from ..utils.exceptions import (
    YogaSwissError,
    ErrorCode,
    ValidationError,
    NotFoundError,
    AuthenticationError,
    AuthorizationError,
    ExternalServiceError,
)

logger = logging.getLogger(__name__)


STATUS_MAP = {
    ErrorCode.VALIDATION_ERROR: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorCode.CLASS_NOT_BOOKABLE: status.HTTP_409_CONFLICT,
    ErrorCode.CLASS_FULL: status.HTTP_409_CONFLICT,
    ErrorCode.ALREADY_REGISTERED: status.HTTP_409_CONFLICT,
    ErrorCode.CANCELLATION_WINDOW_CLOSED: status.HTTP_409_CONFLICT,
    ErrorCode.INVALID_STATE: status.HTTP_409_CONFLICT,
    ErrorCode.RESOURCE_IN_USE: status.HTTP_409_CONFLICT,
    ErrorCode.INSUFFICIENT_FUNDS: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.INSUFFICIENT_CREDITS: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.WALLET_NOT_ACTIVE: status.HTTP_409_CONFLICT,
    ErrorCode.PAYMENT_AMOUNT_INVALID: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.REFUND_AMOUNT_INVALID: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.GIFT_CARD_INVALID: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.DRAWER_CLOSED: status.HTTP_409_CONFLICT,
    ErrorCode.WEBHOOK_SIGNATURE_INVALID: status.HTTP_400_BAD_REQUEST,
    ErrorCode.RATE_LIMIT_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.EXTERNAL_SERVICE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.PAYMENT_SERVICE_ERROR: status.HTTP_502_BAD_GATEWAY,
}


def status_code_for(exc: YogaSwissError) -> int:
    return STATUS_MAP.get(exc.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch everything the routes raise and render one error envelope."""

    def __init__(self, app, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next):
        error_id = str(uuid4())

        try:
            return await call_next(request)
        except Exception as exc:
            return self._handle_exception(request, exc, error_id)

    def _handle_exception(self, request: Request, exc: Exception, error_id: str) -> JSONResponse:
        self._log_error(request, exc, error_id)

        if isinstance(exc, YogaSwissError):
            headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else {}
            return self._envelope(exc, error_id, status_code_for(exc), headers)
        if isinstance(exc, PydanticValidationError):
            return self._handle_validation_error(exc, error_id)
        if isinstance(exc, IntegrityError):
            return self._handle_integrity_error(exc, error_id)
        if isinstance(exc, (OperationalError, SQLTimeoutError)):
            error = ExternalServiceError(
                "database",
                "Database service temporarily unavailable",
                details={"error_type": type(exc).__name__}
            )
            return self._envelope(error, error_id, status.HTTP_503_SERVICE_UNAVAILABLE, {"Retry-After": "30"})
        return self._handle_unexpected_error(exc, error_id)

    def _envelope(self, error: YogaSwissError, error_id: str, status_code: int, headers=None) -> JSONResponse:
        return JSONResponse(
            status_code=status_code,
            content={
                "error": error.to_dict(),
                "error_id": error_id,
                "timestamp": datetime.now(timezone.utc).isoformat()
            },
            headers=headers or {}
        )

    def _handle_validation_error(self, exc: PydanticValidationError, error_id: str) -> JSONResponse:
        field_errors = {}
        for error in exc.errors():
            field_path = ".".join(str(loc) for loc in error["loc"])
            field_errors.setdefault(field_path, []).append(error["msg"])

        error = ValidationError("Request validation failed", field_errors=field_errors)
        return self._envelope(error, error_id, status.HTTP_422_UNPROCESSABLE_ENTITY)

    def _handle_integrity_error(self, exc: IntegrityError, error_id: str) -> JSONResponse:
        message = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()

        if "unique" in message:
            error = ValidationError(
                "A record with this information already exists",
                details={"constraint_type": "unique"}
            )
        elif "foreign key" in message:
            error = ValidationError(
                "Referenced resource does not exist",
                details={"constraint_type": "foreign_key"}
            )
        elif "check constraint" in message:
            error = ValidationError(
                "Value violates a business constraint",
                details={"constraint_type": "check"}
            )
        else:
            error = ValidationError(
                "Data integrity constraint violation",
                details={"constraint_type": "unknown"}
            )

        return self._envelope(error, error_id, status.HTTP_409_CONFLICT)

    def _handle_unexpected_error(self, exc: Exception, error_id: str) -> JSONResponse:
        error = YogaSwissError(
            "An unexpected error occurred",
            error_code=ErrorCode.INTERNAL_ERROR,
            details={"error_type": type(exc).__name__} if self.debug else None
        )
        content = {
            "error": error.to_dict(),
            "error_id": error_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        # Stack trace only in debug mode
        if self.debug:
            content["debug"] = {
                "exception": str(exc),
                "traceback": traceback.format_exc()
            }

        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)

    def _log_error(self, request: Request, exc: Exception, error_id: str):
        request_info = {
            "method": request.method,
            "path": request.url.path,
            "org_id": request.headers.get("x-org-id"),
            "client_ip": request.client.host if request.client else None,
        }

        if isinstance(exc, YogaSwissError):
            extra = {
                "error_id": error_id,
                "error_code": exc.error_code.value,
                "request": request_info,
                "details": exc.details
            }
            if isinstance(exc, (ValidationError, NotFoundError, AuthenticationError, AuthorizationError)):
                logger.warning(f"Client error [{error_id}]: {exc.message}", extra=extra)
            elif isinstance(exc, ExternalServiceError):
                logger.error(f"System error [{error_id}]: {exc.message}", extra=extra)
            else:
                logger.info(f"Business rule rejected request [{error_id}]: {exc.message}", extra=extra)
        else:
            logger.error(
                f"Unexpected error [{error_id}]: {exc}",
                extra={
                    "error_id": error_id,
                    "error_type": type(exc).__name__,
                    "request": request_info,
                },
                exc_info=True
            )
