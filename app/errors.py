from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.services.masspay import (
    AmbiguousTransactionError,
    MassPayError,
    MassPayTransportError,
    TransactionNotFoundError,
)
from app.services.payouts.errors import (
    BalanceClaimConflictError,
    InvalidTransitionError,
    PayoutError,
    PayoutValidationError,
)

logger = logging.getLogger(__name__)

_PAYOUT_ERROR_STATUS = (
    (PayoutValidationError, 400),
    (BalanceClaimConflictError, 409),
    (InvalidTransitionError, 409),
)
_MASSPAY_ERROR_STATUS = (
    (AmbiguousTransactionError, 409, "ambiguous_transaction"),
    (TransactionNotFoundError, 404, "transaction_not_found"),
    (MassPayTransportError, 504, "processor_unavailable"),
)


def _error_payload(code: str, message: str, details: object, request_id: str | None):
    return {"code": code, "message": message, "details": details, "request_id": request_id}


def _request_id(request: Request) -> str:
    rid = getattr(request.state, "request_id", None)
    return str(rid) if rid else "unknown"


def _sanitize_input(value):
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, UploadFile):
        return value.filename or "upload"
    if isinstance(value, dict):
        return {key: _sanitize_input(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_sanitize_input(item) for item in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def register_error_handlers(app) -> None:
    async def _handle_http_exception(request: Request, status_code: int, detail: object):
        code = f"http_{status_code}"
        message = "Request failed"
        details = None
        if isinstance(detail, dict):
            code = detail.get("code", code)
            message = detail.get("message", message)
            details = detail.get("details")
        elif isinstance(detail, str):
            message = detail
        else:
            details = detail
        return JSONResponse(
            status_code=status_code,
            content=_error_payload(code, message, details, _request_id(request)),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return await _handle_http_exception(request, exc.status_code, exc.detail)

    @app.exception_handler(StarletteHTTPException)
    async def starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        detail = exc.detail if getattr(exc, "detail", None) is not None else "Request failed"
        return await _handle_http_exception(request, exc.status_code, detail)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = []
        for error in exc.errors():
            error_copy = dict(error)
            if "input" in error_copy:
                error_copy["input"] = _sanitize_input(error_copy.get("input"))
            error_copy.pop("ctx", None)
            errors.append(error_copy)
        return JSONResponse(
            status_code=422,
            content=_error_payload(
                "validation_error", "Validation error", errors, _request_id(request)
            ),
        )

    @app.exception_handler(PayoutError)
    async def payout_error_handler(request: Request, exc: PayoutError):
        status_code = 400
        for error_class, error_status in _PAYOUT_ERROR_STATUS:
            if isinstance(exc, error_class):
                status_code = error_status
                break
        logger.info("Payout error on %s: %s %s", request.url.path, exc.code, exc.message)
        return JSONResponse(
            status_code=status_code,
            content=_error_payload(exc.code, exc.message, exc.details, _request_id(request)),
        )

    @app.exception_handler(MassPayError)
    async def masspay_error_handler(request: Request, exc: MassPayError):
        status_code, code = 502, "processor_error"
        for error_class, error_status, error_code in _MASSPAY_ERROR_STATUS:
            if isinstance(exc, error_class):
                status_code, code = error_status, error_code
                break
        logger.warning("MassPay error on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status_code,
            content=_error_payload(code, str(exc), None, _request_id(request)),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(
            "Unhandled exception on %s %s",
            request.method,
            request.url.path,
            extra={"request_id": _request_id(request)},
        )
        return JSONResponse(
            status_code=500,
            content=_error_payload(
                "internal_error", "Internal server error", None, _request_id(request)
            ),
        )
