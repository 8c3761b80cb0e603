"""
Request context middleware.

Generates or propagates X-Request-ID headers and keeps per-request values
(request id, acting employee) in ContextVars so log lines emitted anywhere
during the request can carry them.
"""

import time
import logging
from contextvars import ContextVar
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")
_employee_code_var: ContextVar[str] = ContextVar("employee_code", default="")

QUIET_PATHS = frozenset({"/api/health", "/metrics"})


def get_request_id() -> str:
    """Get the current request ID from context."""
    return _request_id_var.get()


def get_employee_code() -> str:
    """Employee authenticated for the current request, or ``""``."""
    return _employee_code_var.get()


def set_employee_code(employee_code: str) -> None:
    # Set from the auth dependency, which runs inside the request's context.
    _employee_code_var.set(employee_code)


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        token = _request_id_var.set(request_id)

        start_time = time.time()
        try:
            response = await call_next(request)
        finally:
            duration_ms = round((time.time() - start_time) * 1000, 2)
            _request_id_var.reset(token)

        response.headers["X-Request-ID"] = request_id

        level = logging.DEBUG if request.url.path in QUIET_PATHS else logging.INFO
        logger.log(
            level,
            "%s %s %s %.0fms",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={"duration_ms": duration_ms, "request_id": request_id},
        )

        return response
