"""
Store Rating - Exception Handlers

Turns every failure into the response envelope:
    {"success": false, "error": {"code": ..., "message": ..., "details": ...}}

Security:
- Internal exception text is logged, never returned
- 401 responses advertise the Bearer scheme
"""

from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from store_rating.auth.schemas import Envelope, ErrorBody
from store_rating.errors import AuthError, SigningKeyError
from store_rating.logging import get_logger


logger = get_logger(__name__)

# Stable codes for framework-raised HTTP errors
_STATUS_TO_CODE = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHENTICATED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "USER_EXISTS",
    422: "VALIDATION_ERROR",
}


def _error_response(
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    envelope = Envelope(success=False, error=ErrorBody(code=code, message=message, details=details))
    headers: Optional[Dict[str, str]] = None
    if status_code == 401:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(status_code=status_code, content=envelope.model_dump(mode="json"), headers=headers)


def internal_error_response() -> JSONResponse:
    """Generic 500 envelope; never carries exception text."""
    return _error_response(500, "INTERNAL_ERROR", "Internal server error")


def _validation_details(exc: RequestValidationError) -> List[Dict[str, str]]:
    """Flatten pydantic errors into field/message pairs."""
    details = []
    for error in exc.errors():
        # Drop the "body"/"query"/"path" prefix
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        message = str(error.get("msg", "Invalid value"))
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        details.append({"field": ".".join(location) or "body", "message": message})
    return details


def register_exception_handlers(app: FastAPI) -> None:
    """Install envelope-producing handlers for domain, validation and uncaught errors."""

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError):
        logger.info(
            "http.auth_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.code,
        )
        return _error_response(exc.status_code, exc.code, exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        details = _validation_details(exc)
        logger.info(
            "http.validation_error",
            path=request.url.path,
            method=request.method,
            fields=[d["field"] for d in details],
        )
        return _error_response(400, "VALIDATION_ERROR", "Invalid input data", details)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        code = _STATUS_TO_CODE.get(exc.status_code, "INTERNAL_ERROR" if exc.status_code >= 500 else "HTTP_ERROR")
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        if exc.status_code >= 500:
            logger.error("http.error", path=request.url.path, method=request.method, status_code=exc.status_code)
        return _error_response(exc.status_code, code, message)

    @app.exception_handler(SigningKeyError)
    async def handle_signing_key_error(request: Request, exc: SigningKeyError):
        logger.critical("auth.signing_key_unavailable", path=request.url.path, method=request.method)
        return internal_error_response()

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "http.unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        )
        return internal_error_response()
