"""Main entry point for the Cloud Credential Operator.

Run with ``kopf run -m cloud_credential_operator.main --all-namespaces``.
"""

from __future__ import annotations

import logging
from typing import Any

import kopf
from kubernetes import client, config

from . import health
from . import logging as structured_logging
from .config import OperatorConfig
from .controller.engine import Engine
from .handlers import cloud_credential, credentials_request, namespaces, secrets  # noqa: F401
from .handlers.shared import get_engine, set_engine
from .tracing import initialize_tracing

logger = logging.getLogger(__name__)

_health_server: Any = None


def load_kubernetes_config() -> None:
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **_: Any) -> None:
    """Configure the operator and start the reconciliation engine."""
    global _health_server
    operator_config = OperatorConfig.from_env()

    # Set up structured JSON logging
    structured_logging.setup_structured_logging(operator_config.log_level)
    initialize_tracing()

    settings.posting.level = logging.INFO
    settings.networking.request_timeout = 30.0
    # Event handlers only enqueue keys; reconcile passes run on the engine's own workers.
    settings.execution.max_workers = 4

    load_kubernetes_config()
    engine = Engine(operator_config, client.CustomObjectsApi(), client.CoreV1Api())
    set_engine(engine)
    engine.start()

    # Metrics and health check endpoints
    _health_server = health.start_health_server(operator_config.metrics_port, engine.ready)

    logger.info(
        f"Cloud Credential Operator started: platform={operator_config.default_platform} "
        f"workers={operator_config.worker_count} "
        f"mode_override={operator_config.mode_override.value if operator_config.mode_override else 'none'}"
    )


@kopf.on.cleanup()
def shutdown(**_: Any) -> None:
    """Stop workers; passes in flight finish their current step."""
    global _health_server
    if _health_server is not None:
        _health_server.shutdown()
        _health_server = None
    engine = get_engine()
    if engine is None:
        return
    engine.stop()
    set_engine(None)
    logger.info("Cloud Credential Operator stopped")
