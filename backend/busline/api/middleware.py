"""
Per-request correlation and access logging for the HTTP API.
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from busline.core.logging import get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Polled by probes and scrapers; logged at debug level only
QUIET_PATHS = frozenset({"/health", "/metrics"})


def route_template(request: Request) -> str:
    """`/api/v1/bookings/{booking_id}` rather than the concrete path."""
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Reuses the caller's X-Request-ID (or assigns a short one) and binds it to
    structlog so booking, payment and cache logs for one request correlate.
    Echoes the id and the elapsed time as response headers.

    WebSocket traffic does not pass through here; the hub logs it.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:8]
        started = time.perf_counter()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                route=route_template(request),
                error=str(e),
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            raise

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        log = logger.debug if request.url.path in QUIET_PATHS else logger.info
        log(
            "request_completed",
            route=route_template(request),
            status_code=response.status_code,
            duration_ms=elapsed_ms,
            client=request.client.host if request.client else None,
        )

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Response-Time"] = f"{elapsed_ms}ms"
        return response
