"""Watch handlers for namespaces targeted by credentials requests."""

from __future__ import annotations

import logging
from typing import Any

import kopf

from .shared import get_engine

logger = logging.getLogger(__name__)


@kopf.on.event("v1", "namespaces")
def on_namespace_event(event: dict[str, Any], name: str, **_: Any) -> None:
    """Retry records that were waiting for their target namespace to appear."""
    if event.get("type") != "ADDED":
        return
    engine = get_engine()
    if engine is None:
        return
    count = engine.enqueue_for_namespace(name)
    if count:
        logger.info(f"Namespace {name} created; re-queued {count} credentials requests")
