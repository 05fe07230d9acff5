"""
Shared API Middleware
======================

Request tracing, request metrics and error handling for the SLA API.

The correlation ID of a request is placed in a context variable, so every
log record written while the request is served (including the records of a
manually triggered sweep) carries it.
"""

import threading
import time
import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, Dict

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from civic_sla.core import ApplicationException, StoreUnavailableException
from civic_sla.shared.infrastructure.logging import correlation_id_var, get_logger

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Reuses the caller's correlation ID or issues a new one."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
        request.state.correlation_id = correlation_id

        token = correlation_id_var.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)

        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class RequestMetrics:
    """
    In-process request counters reported by ``/health``.

    Keyed by route template (``/sla/issues/{issue_id}``), not raw path, so
    issue ids do not fan out the key space.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._requests: Counter = Counter()
        self._server_errors: Counter = Counter()
        self._total_seconds: Dict[str, float] = {}

    def record(self, route: str, status_code: int, elapsed: float) -> None:
        with self._lock:
            self._requests[route] += 1
            if status_code >= 500:
                self._server_errors[route] += 1
            self._total_seconds[route] = self._total_seconds.get(route, 0.0) + elapsed

    def snapshot(self) -> dict:
        with self._lock:
            return {
                route: {
                    "requests": count,
                    "server_errors": self._server_errors[route],
                    "avg_response_ms": round(self._total_seconds[route] / count * 1000, 2),
                }
                for route, count in self._requests.items()
            }


def _route_template(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class MetricsMiddleware(BaseHTTPMiddleware):
    """Times each request and feeds ``RequestMetrics``."""

    def __init__(self, app: ASGIApp, metrics: RequestMetrics):
        super().__init__(app)
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            elapsed = time.perf_counter() - start_time
            self.metrics.record(_route_template(request), status_code, elapsed)

        response.headers["X-Response-Time"] = f"{elapsed:.3f}s"
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs one line per request. Health probes are logged at DEBUG."""

    quiet_paths = ("/health",)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "response_time_ms": int((time.perf_counter() - start_time) * 1000)
                }
            )
            raise

        log = logger.debug if request.url.path in self.quiet_paths else logger.info
        log(
            "Request completed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "response_time_ms": int((time.perf_counter() - start_time) * 1000)
            }
        )
        return response


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Last-resort handler for exceptions no route translated.

    An unreachable issue store is a 503; anything else is a 500 whose
    details are only shown in development.
    """
    correlation_id = getattr(request.state, "correlation_id", "unknown")
    status_code = 503 if isinstance(exc, StoreUnavailableException) else 500

    logger.error(
        "Unhandled exception",
        extra={
            "correlation_id": correlation_id,
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "error_message": str(exc),
            "details": exc.details if isinstance(exc, ApplicationException) else None
        }
    )

    is_dev = getattr(getattr(request.app.state, "settings", None), "environment", None) == "development"

    return JSONResponse(
        status_code=status_code,
        content={
            "detail": "Issue store unavailable" if status_code == 503 else "Internal server error",
            "correlation_id": correlation_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "debug_info": str(exc) if is_dev else None
        }
    )
