"""
Unit tests for the HTTP middleware.

Covers request ID correlation and the per-request access log line.
"""

import logging
import uuid

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from middleware.access_log import AccessLogMiddleware
from middleware.request_id import (
    RequestIDMiddleware,
    request_id_var,
    get_request_id,
    REQUEST_ID_HEADER,
)


@pytest.fixture
def app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/echo")
    async def echo(request: Request):
        return {
            "from_state": request.state.request_id,
            "from_context": get_request_id(),
        }

    return app


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


class TestRequestIDMiddleware:
    """Tests for the RequestIDMiddleware class."""

    def test_generates_uuid_when_header_missing(self, client):
        response = client.get("/echo")

        request_id = response.headers[REQUEST_ID_HEADER]
        assert str(uuid.UUID(request_id)) == request_id

    def test_reuses_caller_request_id(self, client):
        response = client.get("/echo", headers={REQUEST_ID_HEADER: "device-42-req"})

        assert response.headers[REQUEST_ID_HEADER] == "device-42-req"
        assert response.json() == {
            "from_state": "device-42-req",
            "from_context": "device-42-req",
        }

    def test_empty_header_generates_new_id(self, client):
        response = client.get("/echo", headers={REQUEST_ID_HEADER: ""})

        assert len(response.headers[REQUEST_ID_HEADER]) == 36

    def test_requests_get_distinct_ids(self, client):
        first = client.get("/echo").headers[REQUEST_ID_HEADER]
        second = client.get("/echo").headers[REQUEST_ID_HEADER]

        assert first != second

    def test_context_variable_reset_after_request(self, client):
        client.get("/echo", headers={REQUEST_ID_HEADER: "short-lived"})

        assert request_id_var.get() == ""


class TestAccessLogMiddleware:
    """Tests for the AccessLogMiddleware class."""

    def test_logs_method_path_status_and_client(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="telemetry.access"):
            client.get("/echo", headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"})

        records = [r for r in caplog.records if r.name == "telemetry.access"]
        assert len(records) == 1
        data = records[0].extra_data
        assert data["method"] == "GET"
        assert data["path"] == "/echo"
        assert data["status_code"] == 200
        assert data["client"] == "203.0.113.9"
        assert data["duration_ms"] >= 0

    def test_logs_not_found_responses(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="telemetry.access"):
            client.get("/missing")

        records = [r for r in caplog.records if r.name == "telemetry.access"]
        assert records[0].extra_data["status_code"] == 404
