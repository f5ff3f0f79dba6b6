# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
HTTP middleware: request id propagation and Prometheus request metrics.
"""

import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from mustering.core.logging import request_id_var
from mustering.metrics.prometheus import HTTP_ERRORS, REQUEST_COUNT, REQUEST_LATENCY

REQUEST_ID_HEADER = "X-Request-ID"

# Path segments that are part of a route; anything else is an identifier.
ROUTE_SEGMENTS: frozenset[str] = frozenset({
    "api", "v1", "muster", "session", "sessions", "activate", "refresh",
    "deactivate", "cancel", "auto-refresh", "people", "safe", "missing",
    "roster", "zones", "statistics", "notify", "announce", "history",
})

UNTRACKED_PATHS: frozenset[str] = frozenset({
    "/health", "/health/ready", "/metrics", "/openapi.json", "/docs", "/redoc",
})


def route_template(path: str) -> str:
    """``/api/v1/muster/people/staff-1/safe`` -> ``/api/v1/muster/people/{id}/safe``."""
    segments = [s for s in path.split("/") if s]
    if not segments:
        return "/"
    return "/" + "/".join(s if s in ROUTE_SEGMENTS else "{id}" for s in segments)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Reuse the caller's X-Request-ID or mint one; echo it on the response."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    """Count and time mustering API calls; probes and docs are not tracked."""

    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        if request.url.path in UNTRACKED_PATHS:
            return response

        endpoint = route_template(request.url.path)
        status = str(response.status_code)
        REQUEST_COUNT.labels(method=request.method, endpoint=endpoint, status=status).inc()
        REQUEST_LATENCY.labels(method=request.method, endpoint=endpoint).observe(
            time.perf_counter() - started
        )
        if response.status_code >= 400:
            HTTP_ERRORS.labels(method=request.method, endpoint=endpoint, status=status).inc()
        return response
