"""
Request/response logging middleware.
"""

import contextvars
import logging
import time
from typing import Dict, List, Optional
from uuid import uuid4

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="no-request-id")

QUIET_PATHS = {"/health", "/", "/docs", "/redoc", "/openapi.json"}


class LoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with a request id and timing."""

    def __init__(
        self,
        app,
        log_requests: bool = True,
        log_responses: bool = True,
        slow_request_threshold: float = 2.0,
        sensitive_headers: Optional[List[str]] = None
    ):
        super().__init__(app)
        self.log_requests = log_requests
        self.log_responses = log_responses
        self.slow_request_threshold = slow_request_threshold
        self.sensitive_headers = sensitive_headers or [
            "authorization", "cookie", "stripe-signature", "x-api-key"
        ]

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        start_time = time.time()

        if self.log_requests:
            self._log_request(request, request_id)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                f"Request exception: {type(exc).__name__}",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "process_time": time.time() - start_time,
                },
                exc_info=True
            )
            raise
        finally:
            request_id_var.reset(token)

        process_time = time.time() - start_time
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{process_time:.4f}"

        if self.log_responses:
            self._log_response(request, response, request_id, process_time)

        return response

    def _log_request(self, request: Request, request_id: str):
        request_info = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "query_params": dict(request.query_params),
            "client_ip": self._get_client_ip(request),
            "org_id": request.headers.get("x-org-id"),
            "headers": self._sanitize_headers(dict(request.headers)),
        }

        if request.url.path in QUIET_PATHS:
            logger.debug(f"Health check: {request.method} {request.url.path}", extra=request_info)
        elif "/payments" in request.url.path or "/registrations" in request.url.path:
            logger.info(f"Money/booking request: {request.method} {request.url.path}", extra=request_info)
        else:
            logger.info(f"API request: {request.method} {request.url.path}", extra=request_info)

    def _log_response(self, request: Request, response: Response, request_id: str, process_time: float):
        response_info = {
            "request_id": request_id,
            "status_code": response.status_code,
            "process_time": process_time,
        }

        if response.status_code < 400:
            logger.info(f"Response: {response.status_code} ({process_time:.4f}s)", extra=response_info)
        elif response.status_code < 500:
            logger.warning(f"Client error: {response.status_code} ({process_time:.4f}s)", extra=response_info)
        else:
            logger.error(f"Server error: {response.status_code} ({process_time:.4f}s)", extra=response_info)

        if process_time > self.slow_request_threshold:
            logger.warning(
                f"Slow request detected: {request.method} {request.url.path} took {process_time:.4f}s",
                extra={"request_id": request_id, "slow_request": True, "threshold": self.slow_request_threshold}
            )

    def _get_client_ip(self, request: Request) -> str:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    def _sanitize_headers(self, headers: Dict[str, str]) -> Dict[str, str]:
        sanitized = {}
        for key, value in headers.items():
            if key.lower() in self.sensitive_headers:
                if key.lower() == "authorization" and value.startswith("Bearer "):
                    sanitized[key] = f"Bearer ***{value[-4:]}"
                else:
                    sanitized[key] = "***MASKED***"
            else:
                sanitized[key] = value
        return sanitized
