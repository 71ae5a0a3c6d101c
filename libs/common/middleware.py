"""Observability middleware for FastAPI.

Every request gets an X-Request-ID (propagated or generated) that is bound to
the logging context and echoed on the response. Failed requests also carry the
domain error code that ``error_handler`` put in ``X-Error-Code``.

Usage:
    from libs.common.middleware import add_observability_middleware

    app = FastAPI()
    add_observability_middleware(app)
"""
import time
from typing import Callable

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from libs.common.logging import (
    clear_request_context,
    configure_logging,
    get_logger,
    set_request_context,
)

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
ERROR_CODE_HEADER = "X-Error-Code"

_QUIET_PATHS = frozenset({"/health"})


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind request context and log one line per finished request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = set_request_context(
            request_id=request.headers.get(REQUEST_ID_HEADER),
            path=request.url.path,
            method=request.method,
        )
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "%s %s raised",
                request.method,
                request.url.path,
                extra={"extra_fields": {"duration_ms": _elapsed_ms(start)}},
            )
            raise
        else:
            if request.url.path not in _QUIET_PATHS:
                fields = {
                    "status_code": response.status_code,
                    "duration_ms": _elapsed_ms(start),
                }
                error_code = response.headers.get(ERROR_CODE_HEADER)
                if error_code:
                    fields["error_code"] = error_code
                log = logger.warning if response.status_code >= 400 else logger.info
                log(
                    "%s %s -> %d",
                    request.method,
                    request.url.path,
                    response.status_code,
                    extra={"extra_fields": fields},
                )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            clear_request_context()


def add_observability_middleware(app: FastAPI) -> None:
    """Configure logging and install the request context middleware."""
    configure_logging()
    app.add_middleware(RequestContextMiddleware)
