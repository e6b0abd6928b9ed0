"""
Application errors and the FastAPI handlers that render them.

Every error response carries the same envelope:
    {"error": {"code", "message", "request_id", "details"?}, "detail": message}
"""

import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from plansync.core.logging import get_request_id

logger = logging.getLogger("plansync.errors")


class AppError(Exception):
    """Base error with a stable machine-readable code and an HTTP status."""

    code = "app_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        user_id: Optional[str] = None,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.code
        self.status_code = status_code or self.status_code
        self.user_id = user_id
        self.request_id = request_id
        self.details = details


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class InvalidArgumentError(ValidationError):
    """Bad plan value or user id; raised before any store is touched."""
    code = "invalid_argument"


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class AccountNotFoundError(NotFoundError):
    code = "account_not_found"


class StoreUnavailableError(AppError):
    code = "store_unavailable"
    status_code = 503


class ReconciliationFailedError(AppError):
    """Plan mismatch persisted after the emergency bypass."""
    code = "reconciliation_failed"
    status_code = 502


def _request_id_for(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or str(uuid4())


def error_response(
    status_code: int,
    code: str,
    message: str,
    request_id: str,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    """Error envelope shared by every handler; `detail` mirrors FastAPI's default key."""
    error: Dict[str, Any] = {"code": code, "message": message, "request_id": request_id}
    if details:
        error["details"] = details
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "detail": message},
        headers={"x-request-id": request_id},
    )


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _request_id_for(request)
    logger.log(
        logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "status": exc.status_code, "user_id": exc.user_id},
    )
    return error_response(exc.status_code, exc.code, exc.message, rid, exc.details)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _request_id_for(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    return error_response(exc.status_code, code, str(exc.detail or "HTTP error"), rid)


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _request_id_for(request)
    logger.error("unhandled.exception", exc_info=exc, extra={"request_id": rid, "error_code": "internal_error"})
    return error_response(500, "internal_error", "Unexpected error", rid)
