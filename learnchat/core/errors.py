"""Error taxonomy and normalized error handlers."""

import logging
import builtins
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request

from learnchat.core.config import settings
from learnchat.core.i18n import get_error_message, resolve_locale
from learnchat.core.logging import get_request_id


class AppError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id
        self.details = details


class ValidationError(AppError, ValueError):
    code = "VALIDATION_ERROR"
    status_code = 400


class UnauthorizedError(AppError):
    code = "UNAUTHORIZED"
    status_code = 401


class PermissionError(AppError, builtins.PermissionError):
    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(AppError, ValueError):
    code = "NOT_FOUND"
    status_code = 404


class AlreadyAnsweredError(AppError):
    """Raised when a quiz that left the pending state is answered again."""
    code = "ALREADY_ANSWERED"
    status_code = 400


class ConflictError(AppError):
    code = "CONFLICT"
    status_code = 409


class ConfigError(AppError):
    """Missing provider credentials or settings; not retryable."""
    code = "CONFIG_ERROR"
    status_code = 500


class OutOfCreditsError(AppError):
    code = "OUT_OF_CREDITS"
    status_code = 403


class RateLimitError(AppError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429


class TokenLimitError(AppError):
    code = "TOKEN_LIMIT_EXCEEDED"
    status_code = 429


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _locale_for(request: Request) -> str:
    return resolve_locale(request.headers.get("accept-language"), settings.DEFAULT_LOCALE)


def _error_payload(code: str, message: str, request_id: str, detail: str, details: Optional[Dict[str, Any]] = None) -> dict:
    error = {"code": code, "message": message, "request_id": request_id}
    if details:
        error["details"] = details
    return {"error": error, "detail": detail}


def _respond(status_code: int, payload: dict, request_id: str) -> JSONResponse:
    response = JSONResponse(status_code=status_code, content=payload)
    response.headers["x-request-id"] = request_id
    return response


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    localized = get_error_message(exc.code, _locale_for(request))
    detail = exc.message
    if exc.status_code >= 500 and settings.ENV.lower() == "production":
        detail = localized
    payload = _error_payload(exc.code, localized, rid, detail, exc.details)
    logger = logging.getLogger("learnchat")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    return _respond(exc.status_code, payload, rid)


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    rid = _extract_request_id(request)
    code = {401: "UNAUTHORIZED", 403: "FORBIDDEN", 404: "NOT_FOUND"}.get(exc.status_code, "VALIDATION_ERROR" if exc.status_code < 500 else "INTERNAL_ERROR")
    localized = get_error_message(code, _locale_for(request))
    detail = exc.detail if isinstance(exc.detail, str) and exc.detail else localized
    logger = logging.getLogger("learnchat")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    return _respond(exc.status_code, _error_payload(code, localized, rid, detail), rid)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    localized = get_error_message("VALIDATION_ERROR", _locale_for(request))
    fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
    logger = logging.getLogger("learnchat")
    logger.warning("request.invalid", extra={"request_id": rid, "error_code": "VALIDATION_ERROR", "fields": fields})
    payload = _error_payload("VALIDATION_ERROR", localized, rid, "Invalid request body", {"fields": fields})
    return _respond(400, payload, rid)


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("learnchat")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "INTERNAL_ERROR"})
    localized = get_error_message("INTERNAL_ERROR", _locale_for(request))
    return _respond(500, _error_payload("INTERNAL_ERROR", localized, rid, localized), rid)
