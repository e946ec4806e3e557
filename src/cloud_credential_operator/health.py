"""Health check and metrics endpoint for the operator."""

from __future__ import annotations

import threading
from typing import Any, Callable

from prometheus_client import make_wsgi_app
from werkzeug.serving import make_server
from werkzeug.wrappers import Response


def create_combined_wsgi_app(readiness_check: Callable[[], bool] | None = None) -> Any:
    """Create a WSGI app that combines metrics and health check endpoints.

    Args:
        readiness_check: Callable returning True once the worker pool is running

    Returns:
        Combined WSGI application
    """
    metrics_app = make_wsgi_app()

    def combined_app(environ: dict[str, Any], start_response: Any) -> Any:
        """Route /healthz and /readyz, delegate everything else to prometheus."""
        path = environ.get("PATH_INFO", "")

        if path == "/healthz":
            response = Response('{"status":"ok"}', mimetype="application/json", status=200)
            return response(environ, start_response)
        if path == "/readyz":
            if readiness_check is None or readiness_check():
                response = Response('{"status":"ready"}', mimetype="application/json", status=200)
            else:
                response = Response('{"status":"not ready"}', mimetype="application/json", status=503)
            return response(environ, start_response)
        return metrics_app(environ, start_response)

    return combined_app


def start_health_server(port: int, readiness_check: Callable[[], bool] | None = None) -> Any:
    """Serve metrics and health checks from a background thread.

    Returns:
        The werkzeug server, so callers can shut it down
    """
    server = make_server("", port, create_combined_wsgi_app(readiness_check), threaded=True)
    thread = threading.Thread(target=server.serve_forever, name="health-server", daemon=True)
    thread.start()
    return server
