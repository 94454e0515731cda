"""Error taxonomy and FastAPI handlers."""

import logging
import builtins
from typing import Dict, List, Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from liftrank.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        request_id: Optional[str] = None,
        details: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id
        self.details = list(details or [])


class ValidationError(AppError, ValueError):
    """Malformed or out-of-range input. Nothing is written."""
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class PermissionError(AppError, builtins.PermissionError):
    code = "forbidden"
    status_code = 403


class ConfigError(AppError, ValueError):
    """Ranking weights (or thresholds) are misconfigured. Never auto-corrected."""
    code = "config_error"
    status_code = 400


class TransientStoreError(AppError):
    """Persistence I/O failed. Safe to retry."""
    code = "transient_store_error"
    status_code = 503


class RecalculationTimeoutError(TransientStoreError):
    code = "recalculation_timeout"
    status_code = 503


class RateLimitError(AppError):
    code = "rate_limited"
    status_code = 429




# Status codes raised as HTTPException (auth dependencies, routing) and their error codes
_HTTP_CODES = {
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    503: "unavailable",
}

logger = logging.getLogger("liftrank")


def _request_id_for(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or str(uuid4())


def error_body(code: str, message: str, request_id: str, details: Optional[List[str]] = None) -> dict:
    """
    Body shared by every error response:

        {"success": false, "error": {"code", "message", "request_id", ["details"]}, "detail": message}
    """
    error = {"code": code, "message": message, "request_id": request_id}
    if details:
        error["details"] = list(details)
    return {"success": False, "error": error, "detail": message}


def _respond(status: int, body: dict, request_id: str, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    response = JSONResponse(status_code=status, content=body, headers=headers)
    response.headers["x-request-id"] = request_id
    return response


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _request_id_for(request)
    logger.log(
        logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    return _respond(exc.status_code, error_body(exc.code, exc.message, rid, exc.details), rid)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _request_id_for(request)
    code = _HTTP_CODES.get(exc.status_code, "http_error")
    message = exc.detail if isinstance(exc.detail, str) and exc.detail else "HTTP error"
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    return _respond(exc.status_code, error_body(code, message, rid), rid, getattr(exc, "headers", None))


async def request_validation_handler(request: Request, exc: RequestValidationError):
    """FastAPI's 422 for malformed query/body becomes the same 400 validation_error as service-side checks."""
    rid = _request_id_for(request)
    details = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        details.append(f"{location}: {err.get('msg')}")
    logger.warning("request.invalid", extra={"request_id": rid, "error_code": "validation_error", "status": 400})
    return _respond(400, error_body("validation_error", "Invalid request", rid, details), rid)


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _request_id_for(request)
    logger.error("unhandled.exception", exc_info=exc, extra={"request_id": rid, "error_code": "internal_error"})
    return _respond(500, error_body("internal_error", "Unexpected error", rid), rid)
