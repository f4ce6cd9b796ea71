from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from sessionward.api.schemas import VALID_ERROR_CODES, Envelope, ErrorBody
from sessionward.logging import get_logger, sanitize_error_message
from sessionward.service.errors import ServiceError, TokenError, public_auth_error
from sessionward.storage.errors import StoreUnavailable

logger = get_logger(__name__)

_STATUS_TO_CODE = {
    400: "validation_error",
    401: "unauthorized",
    404: "not_found",
    409: "conflict",
    503: "store_unavailable",
}


def _error_code_for(exc: ServiceError) -> str:
    if exc.error_code in VALID_ERROR_CODES:
        return exc.error_code
    return _STATUS_TO_CODE.get(exc.status_code, "server_error")


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "correlation_id", None)


def _error_response(
    request: Request,
    status_code: int,
    message: str,
    details: dict | list | None = None,
    code: str = "server_error",
) -> JSONResponse:
    error_body = ErrorBody(code=code, message=message, details=details or None)
    envelope = Envelope(status="error", error=error_body)
    request_id = _request_id(request)
    if request_id:
        envelope.request_id = request_id
    return JSONResponse(status_code=status_code, content=envelope.model_dump(mode="json"))


def register_exception_handlers(app: FastAPI) -> None:
    """Render service and storage errors as error envelopes."""

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
            correlation_id=_request_id(request),
        )
        if isinstance(exc, TokenError):
            # Rejection reasons stay in the log above
            exc = public_auth_error()
        return _error_response(
            request,
            exc.status_code,
            sanitize_error_message(exc.message),
            exc.detail,
            code=_error_code_for(exc),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        details = [
            {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
            for error in exc.errors()
        ]
        logger.info(
            "request_validation_failed",
            path=request.url.path,
            method=request.method,
            correlation_id=_request_id(request),
        )
        return _error_response(
            request, 400, "invalid request", details, code="validation_error"
        )

    @app.exception_handler(StoreUnavailable)
    async def handle_store_unavailable(request: Request, exc: StoreUnavailable):
        logger.error(
            "store_unavailable",
            path=request.url.path,
            method=request.method,
            operation=exc.operation,
            cause=type(exc.__cause__).__name__ if exc.__cause__ else None,
            correlation_id=_request_id(request),
        )
        return _error_response(
            request,
            503,
            "temporarily unavailable, retry later",
            code="store_unavailable",
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
            correlation_id=_request_id(request),
        )
        return _error_response(request, 500, "internal server error")
