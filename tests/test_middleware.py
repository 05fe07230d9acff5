"""
Tests for request tracing, request metrics and the fallback error handler.
"""

import logging

from fastapi import FastAPI
from fastapi.testclient import TestClient

from civic_sla.core import StoreUnavailableException
from civic_sla.main import app as main_app
from civic_sla.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    MetricsMiddleware,
    RequestMetrics,
    global_exception_handler,
)
from civic_sla.shared.infrastructure.logging import _ContextFilter, correlation_id_var


def build_app(metrics: RequestMetrics) -> FastAPI:
    app = FastAPI()
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(MetricsMiddleware, metrics=metrics)
    app.add_middleware(CorrelationIDMiddleware)
    app.add_exception_handler(Exception, global_exception_handler)

    @app.get("/items/{item_id}")
    async def read_item(item_id: str):
        return {"item_id": item_id, "correlation_id": correlation_id_var.get()}

    @app.get("/store")
    async def store_down():
        raise StoreUnavailableException("list_issues", "db down")

    return app


class TestCorrelationID:

    def test_caller_id_is_reused_and_visible_to_handlers(self):
        client = TestClient(build_app(RequestMetrics()))

        response = client.get("/items/1", headers={"X-Correlation-ID": "req-42"})

        assert response.headers["X-Correlation-ID"] == "req-42"
        assert response.json()["correlation_id"] == "req-42"
        assert correlation_id_var.get() is None

    def test_id_generated_when_missing(self):
        client = TestClient(build_app(RequestMetrics()))

        response = client.get("/items/1")

        assert response.headers["X-Correlation-ID"] == response.json()["correlation_id"]

    def test_filter_stamps_log_records(self):
        record = logging.LogRecord("civic_sla", logging.INFO, __file__, 1, "msg", None, None)
        token = correlation_id_var.set("req-7")
        try:
            _ContextFilter("test").filter(record)
        finally:
            correlation_id_var.reset(token)

        assert record.correlation_id == "req-7"
        assert record.environment == "test"


class TestRequestMetrics:

    def test_counts_by_route_template(self):
        metrics = RequestMetrics()
        client = TestClient(build_app(metrics))

        client.get("/items/1")
        client.get("/items/2")
        client.get("/missing")

        snapshot = metrics.snapshot()
        assert snapshot["/items/{item_id}"]["requests"] == 2
        assert snapshot["/items/{item_id}"]["server_errors"] == 0
        assert snapshot["unmatched"]["requests"] == 1

    def test_health_reports_request_metrics(self):
        client = TestClient(main_app)

        client.get("/")
        data = client.get("/health").json()

        assert data["requests"]["/"]["requests"] >= 1


class TestGlobalExceptionHandler:

    def test_store_unavailable_maps_to_503(self):
        client = TestClient(build_app(RequestMetrics()), raise_server_exceptions=False)

        response = client.get("/store", headers={"X-Correlation-ID": "req-9"})

        assert response.status_code == 503
        assert response.json()["detail"] == "Issue store unavailable"
        assert response.json()["correlation_id"] == "req-9"
