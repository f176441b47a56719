"""
Request validation middleware with detailed error responses.
"""

import json
import logging
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from ..utils.exceptions import ValidationError

logger = logging.getLogger(__name__)

WRITE_METHODS = ("POST", "PUT", "PATCH")


class ValidationMiddleware(BaseHTTPMiddleware):
    """Reject oversized, non-JSON or malformed requests before they reach a route."""

    def __init__(self, app, max_request_size: int = 1024 * 1024):
        super().__init__(app)
        self.max_request_size = max_request_size

    async def dispatch(self, request: Request, call_next):
        if self._too_large(request):
            error = ValidationError(
                f"Request too large. Maximum size is {self.max_request_size} bytes",
                details={"max_bytes": self.max_request_size}
            )
            return JSONResponse(status_code=413, content={"error": error.to_dict()})

        if request.method in WRITE_METHODS:
            body = await request.body()
            # Action endpoints (cancel, check-in, ...) are posted without a body
            if body:
                validation_error = self._validate_json_body(request, body)
                if validation_error:
                    return validation_error

        validation_error = self._validate_query_parameters(request)
        if validation_error:
            return validation_error

        return await call_next(request)

    def _too_large(self, request: Request) -> bool:
        content_length = request.headers.get("content-length")
        if not content_length:
            return False
        try:
            return int(content_length) > self.max_request_size
        except ValueError:
            return False

    def _validate_json_body(self, request: Request, body: bytes) -> Optional[JSONResponse]:
        content_type = request.headers.get("content-type", "")
        if not content_type.startswith("application/json"):
            error = ValidationError(
                "Invalid content type",
                details={"expected": "application/json", "received": content_type}
            )
            return JSONResponse(status_code=415, content={"error": error.to_dict()})

        try:
            json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            error = ValidationError(
                "Invalid JSON payload",
                details={
                    "json_error": str(e),
                    "line": getattr(e, "lineno", None),
                    "column": getattr(e, "colno", None)
                }
            )
            return JSONResponse(status_code=400, content={"error": error.to_dict()})

        return None

    def _validate_query_parameters(self, request: Request) -> Optional[JSONResponse]:
        errors = []

        for param, value in request.query_params.items():
            if param == "limit":
                try:
                    limit_val = int(value)
                    if limit_val < 1:
                        errors.append(f"Parameter 'limit' must be positive, got {limit_val}")
                    elif limit_val > 500:
                        errors.append(f"Parameter 'limit' cannot exceed 500, got {limit_val}")
                except ValueError:
                    errors.append(f"Parameter 'limit' must be an integer, got '{value}'")

            elif param == "offset":
                try:
                    if int(value) < 0:
                        errors.append(f"Parameter 'offset' must be non-negative, got {value}")
                except ValueError:
                    errors.append(f"Parameter 'offset' must be an integer, got '{value}'")

        if errors:
            error = ValidationError("Invalid query parameters", details={"parameter_errors": errors})
            return JSONResponse(status_code=400, content={"error": error.to_dict()})

        return None
