"""Tests for health check endpoints."""

from __future__ import annotations

from unittest.mock import MagicMock

from cloud_credential_operator.health import create_combined_wsgi_app


def call(app, path: str):
    environ = {
        "REQUEST_METHOD": "GET",
        "PATH_INFO": path,
        "SCRIPT_NAME": "",
        "SERVER_NAME": "localhost",
        "SERVER_PORT": "8080",
        "wsgi.url_scheme": "http",
    }
    start_response = MagicMock()
    body = b"".join(app(environ, start_response))
    return start_response.call_args[0][0], body


class TestCombinedApp:
    """Test cases for the combined metrics and health WSGI app."""

    def test_healthz(self):
        """Test that /healthz always answers ok."""
        status, body = call(create_combined_wsgi_app(), "/healthz")
        assert status.startswith("200")
        assert b'"status":"ok"' in body

    def test_readyz_when_ready(self):
        """Test that /readyz is 200 once the workers run."""
        status, body = call(create_combined_wsgi_app(lambda: True), "/readyz")
        assert status.startswith("200")
        assert b'"status":"ready"' in body

    def test_readyz_when_not_ready(self):
        """Test that /readyz is 503 while the workers are down."""
        status, body = call(create_combined_wsgi_app(lambda: False), "/readyz")
        assert status.startswith("503")
        assert b"not ready" in body

    def test_metrics_delegated(self):
        """Test that other paths are served by the prometheus app."""
        status, body = call(create_combined_wsgi_app(), "/metrics")
        assert status.startswith("200")
        assert b"cloud_credential_operator_reconcile" in body
