"""
Store Rating - Security Middleware

Request/response middleware for:
- Request ID injection for tracing (bound into structlog context)
- One structured log entry per request
- Security headers

Request bodies are never logged.
"""

import time
import uuid
from typing import Callable, Optional

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from store_rating.gateway.error_handling import internal_error_response
from store_rating.logging import get_logger


logger = get_logger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Cache-Control": "no-store",
}


class SecurityMiddleware(BaseHTTPMiddleware):
    """
    Security-focused middleware for all incoming requests.

    Responsibilities:
    1. Assign X-Request-ID (reusing a sane client-supplied one)
    2. Bind request_id into the logging context for the request's lifetime
    3. Add security headers to the response
    4. Log method, path, status and duration, also when the handler crashed
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process each request through security pipeline."""
        incoming = request.headers.get("X-Request-ID", "")
        request_id = incoming if 0 < len(incoming) <= 64 and incoming.isprintable() else str(uuid.uuid4())
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response: Optional[Response] = None
        start_time = time.perf_counter()
        try:
            try:
                response = await call_next(request)
            except Exception as exc:
                logger.exception(
                    "http.unhandled_exception",
                    exc_info=exc,
                    path=request.url.path,
                    method=request.method,
                    error_type=type(exc).__name__,
                )
                response = internal_error_response()

            response.headers["X-Request-ID"] = request_id
            for header, value in SECURITY_HEADERS.items():
                response.headers[header] = value
            return response
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            user = getattr(request.state, "user", None)
            logger.info(
                "http.request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code if response is not None else 500,
                duration_ms=round(duration_ms, 2),
                user_id=str(user.id) if user is not None else None,
            )
            structlog.contextvars.clear_contextvars()
