"""API error type and the FastAPI exception handlers that render it.

Every failure response has the same body::

    {"success": false, "error": {"message", "code", "status", "details"?}}
"""
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..utils.logger import get_logger

logger = get_logger()


class ApiError(Exception):
    def __init__(self, message: str, code: str, status: int, details: Any = None, headers: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status
        self.details = details
        self.headers = headers

    @classmethod
    def bad_request(cls, message: str, details: Any = None) -> "ApiError":
        return cls(message, "BAD_REQUEST", 400, details)

    @classmethod
    def not_found(cls, message: str = "Resource not found") -> "ApiError":
        return cls(message, "NOT_FOUND", 404)

    @classmethod
    def too_many_requests(cls, message: str = "Too many requests", headers: Optional[dict] = None) -> "ApiError":
        return cls(message, "TOO_MANY_REQUESTS", 429, headers=headers)

    @classmethod
    def internal(cls, message: str = "Internal server error") -> "ApiError":
        return cls(message, "INTERNAL_ERROR", 500)


class AgentExecutionError(ApiError):
    """The responder pipeline ended with an error while a caller waited for a full result."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message, code or "AGENT_ERROR", 500)


def error_body(message: str, code: str, status: int, details: Any = None) -> dict:
    error = {"message": message, "code": code, "status": status}
    if details is not None:
        error["details"] = details
    return {"success": False, "error": error}


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    return JSONResponse(
        status_code=exc.status,
        content=error_body(exc.message, exc.code, exc.status, exc.details),
        headers=exc.headers,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        # drop the leading "body"/"query" location segment
        {"path": ".".join(str(p) for p in err["loc"][1:]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content=error_body("Validation error", "VALIDATION_ERROR", 400, details))


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = "NOT_FOUND" if exc.status_code == 404 else "HTTP_EXCEPTION"
    message = "Not found" if exc.status_code == 404 else str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(message, code, exc.status_code),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content=error_body(str(exc) or "An unexpected error occurred", "INTERNAL_ERROR", 500),
    )


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
