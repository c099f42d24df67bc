"""
Unit tests for the Hello World API application.

Each test builds its own app from explicit settings, so no state is shared
between tests.
"""

import asyncio
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from structlog.testing import capture_logs

from hello_api import routes
from hello_api.app import create_app
from hello_api.config import Settings


@pytest.fixture
def settings():
    return Settings(env="test")


@pytest.fixture
def client(settings):
    """
    Create isolated test client for each test.
    Ensures no test interdependencies.
    """
    return TestClient(create_app(settings))


@pytest.fixture
def failing_hello(monkeypatch):
    """Make the hello handler raise RuntimeError("boom")."""

    def explode():
        raise RuntimeError("boom")

    monkeypatch.setattr(routes, "render_greeting", explode)


class TestHelloEndpoint:
    """Test suite for GET /hello."""

    def test_hello_returns_success_status(self, client):
        """Verify /hello returns 200 OK status."""
        response = client.get("/hello")

        assert response.status_code == 200

    def test_hello_returns_exact_body(self, client):
        """Verify the body is exactly the greeting bytes."""
        response = client.get("/hello")

        assert response.content == b"Hello world"

    def test_hello_content_type_is_plain_text(self, client):
        response = client.get("/hello")

        assert response.headers["content-type"] == "text/plain; charset=utf-8"

    def test_query_string_is_ignored(self, client):
        response = client.get("/hello?x=1")

        assert response.status_code == 200
        assert response.text == "Hello world"

    def test_headers_and_body_are_ignored(self, client):
        response = client.request(
            "GET",
            "/hello",
            headers={"X-Custom": "value", "Content-Type": "application/json"},
            content=b'{"name": "ignored"}',
        )

        assert response.status_code == 200
        assert response.text == "Hello world"

    def test_repeated_requests_are_identical(self, client):
        """Verify responses do not change between requests."""
        responses = [client.get("/hello") for _ in range(5)]

        assert {r.status_code for r in responses} == {200}
        assert {r.content for r in responses} == {b"Hello world"}


class TestRouting:
    """Test unmatched paths and methods."""

    @pytest.mark.parametrize(
        "path",
        ["/nonexistent", "/", "/hello/", "/Hello", "/hello/world", "/docs", "/openapi.json"],
    )
    def test_unmatched_path_returns_404(self, client, path):
        response = client.get(path)

        assert response.status_code == 404
        assert response.headers["content-type"] == "application/json"
        assert response.json()["error"] == "Not Found"

    def test_not_found_body_structure(self, client):
        response = client.get("/nonexistent")

        json_data = response.json()
        assert set(json_data.keys()) == {"error", "status", "timestamp", "path"}
        assert json_data["status"] == 404
        assert json_data["path"] == "/nonexistent"

    @pytest.mark.parametrize("method", ["POST", "PUT", "DELETE", "PATCH"])
    def test_wrong_method_on_hello_returns_405(self, client, method):
        """Verify other methods are rejected with Allow: GET."""
        response = client.request(method, "/hello")

        assert response.status_code == 405
        assert "GET" in response.headers["allow"]
        assert response.json()["error"] == "Method Not Allowed"

    @pytest.mark.parametrize("method", ["POST", "PUT", "DELETE"])
    def test_other_methods_on_unknown_path_return_404(self, client, method):
        response = client.request(method, "/nonexistent")

        assert response.status_code == 404


class TestErrorHandling:
    """Test the terminal error handler."""

    def test_handler_failure_returns_500(self, client, failing_hello):
        response = client.get("/hello")

        assert response.status_code == 500
        assert response.headers["content-type"] == "application/json"

    def test_handler_failure_body_is_generic(self, client, failing_hello):
        """Verify only the fixed fields reach the client."""
        response = client.get("/hello")

        json_data = response.json()
        assert set(json_data.keys()) == {"error", "status", "timestamp", "path"}
        assert json_data["error"] == "Internal Server Error"
        assert json_data["status"] == 500
        assert json_data["path"] == "/hello"
        datetime.fromisoformat(json_data["timestamp"].replace("Z", "+00:00"))

    def test_handler_failure_does_not_disclose_details(self, client, failing_hello):
        response = client.get("/hello")

        for leaked in ("boom", "RuntimeError", "Traceback", 'File "', ".py"):
            assert leaked not in response.text

    def test_handler_failure_is_logged_with_stack(self, client, failing_hello):
        with capture_logs() as logs:
            client.get("/hello")

        errors = [log for log in logs if log["event"] == "unhandled application error"]
        assert len(errors) == 1
        assert errors[0]["log_level"] == "error"
        assert errors[0]["error_message"] == "boom"
        assert "Traceback" in errors[0]["error_stack"]
        assert "boom" in errors[0]["error_stack"]
        assert errors[0]["request_method"] == "GET"
        assert errors[0]["request_url"] == "/hello"

    def test_service_recovers_after_failure(self, client, monkeypatch):
        """Verify a failure does not affect subsequent requests."""

        def explode():
            raise RuntimeError("boom")

        monkeypatch.setattr(routes, "render_greeting", explode)
        assert client.get("/hello").status_code == 500

        monkeypatch.undo()
        response = client.get("/hello")
        assert response.status_code == 200
        assert response.text == "Hello world"


class TestRequestTimeout:
    """Test the per-request deadline."""

    def test_slow_request_returns_504(self):
        app = create_app(Settings(env="test", request_timeout=0.05))

        async def slow():
            await asyncio.sleep(0.3)
            return "late"

        app.add_api_route("/slow", slow)
        client = TestClient(app)

        with capture_logs() as logs:
            response = client.get("/slow")

        assert response.status_code == 504
        assert response.json()["error"] == "Gateway Timeout"
        assert any(log["event"] == "request timed out" for log in logs)

    def test_fast_request_is_unaffected(self):
        client = TestClient(create_app(Settings(env="test", request_timeout=0.05)))

        assert client.get("/hello").text == "Hello world"


class TestLifespan:
    def test_startup_and_shutdown_are_logged(self, settings):
        with capture_logs() as logs:
            with TestClient(create_app(settings)) as client:
                client.get("/hello")

        events = [log["event"] for log in logs]
        assert "application started" in events
        assert "application stopped" in events
