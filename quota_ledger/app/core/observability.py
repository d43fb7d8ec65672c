"""
Request logging middleware.

Every request carries a correlation id (taken from the caller or minted
here) that is echoed back and attached to the access log. Gateway webhook
deliveries also log the gateway's event id so a delivery can be traced
from the gateway dashboard to our logs.
"""

import time
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("quota_ledger.http")

CORRELATION_HEADER = "X-Correlation-ID"
GATEWAY_EVENT_HEADER = "X-Razorpay-Event-Id"

# Polled by load balancers, logged at DEBUG
QUIET_PATHS = {"/health"}


def _level_for(status_code: int, path: str) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    if path in QUIET_PATHS:
        return logging.DEBUG
    return logging.INFO


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - started) * 1000, 2)

        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers["X-Process-Time"] = str(duration_ms)

        path = request.url.path
        extra = {
            "correlation_id": correlation_id,
            "method": request.method,
            "path": path,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
        }
        gateway_event = request.headers.get(GATEWAY_EVENT_HEADER)
        if gateway_event:
            extra["gateway_event_id"] = gateway_event

        logger.log(
            _level_for(response.status_code, path),
            "%s %s -> %d (%.2f ms) [%s]",
            request.method, path, response.status_code, duration_ms, correlation_id,
            extra=extra,
        )
        return response
