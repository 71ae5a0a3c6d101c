"""Uniform error bodies for FastAPI services.

Every failure leaves the API as ``{"ok": false, "code", "message", "details"?}``.

Usage:
    from libs.common.error_handler import add_exception_handlers

    add_exception_handlers(app, domain_error=MarketError)
"""

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from libs.common.logging import get_logger
from libs.common.middleware import ERROR_CODE_HEADER

logger = get_logger(__name__)

_HTTP_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
}


def _body(code: str, message: str, details: Any = None) -> dict[str, Any]:
    body: dict[str, Any] = {"ok": False, "code": code, "message": message}
    if details:
        body["details"] = details
    return body


def _error_response(
    status_code: int, content: dict[str, Any], headers: Optional[dict] = None
) -> JSONResponse:
    headers = {**(headers or {}), ERROR_CODE_HEADER: content["code"]}
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def add_exception_handlers(app: FastAPI, domain_error: type[Exception]) -> None:
    """Register handlers for ``domain_error``, validation and HTTP errors.

    ``domain_error`` instances must expose ``status_code``, ``code`` and
    ``to_dict()``.
    """

    @app.exception_handler(domain_error)
    async def handle_domain_error(request: Request, exc) -> JSONResponse:
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            "%s %s -> %d %s: %s",
            request.method,
            request.url.path,
            exc.status_code,
            exc.code.value,
            exc.message,
        )
        return _error_response(exc.status_code, exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        return _error_response(
            400, _body("VALIDATION_ERROR", "Request validation failed", errors)
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        code = _HTTP_CODES.get(exc.status_code, "ERROR")
        return _error_response(
            exc.status_code,
            _body(code, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )
