"""
Per-request logging.

Every request gets an id (taken from ``x-request-id`` when the caller sends
one) that is bound into the structlog context, echoed back in the response
headers and attached to a single ``http_request`` event.
"""

import logging
import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.stdlib.get_logger("http")

# Polled by load balancers; only worth seeing at DEBUG
QUIET_PATHS = frozenset({"/healthz"})


def _level_for(path: str, status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    if path in QUIET_PATHS:
        return logging.DEBUG
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
        request.state.request_id = request_id
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["x-request-id"] = request_id
            return response
        finally:
            logger.log(
                _level_for(request.url.path, status_code),
                "http_request",
                method=request.method,
                path=request.url.path,
                query=request.url.query or None,
                status=status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
            )
