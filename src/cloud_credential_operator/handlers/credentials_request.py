"""Watch handlers for CredentialsRequest records."""

from __future__ import annotations

import logging
from typing import Any

import kopf

from ..constants import API_GROUP_VERSION, KIND_CREDENTIALS_REQUEST
from ..models import ObjectKey
from .shared import get_engine

logger = logging.getLogger(__name__)


@kopf.on.event(API_GROUP_VERSION, KIND_CREDENTIALS_REQUEST)
def on_credentials_request_event(
    event: dict[str, Any],
    name: str,
    namespace: str,
    **_: Any,
) -> None:
    """Queue the record on every watch event, including deletions and the initial listing."""
    engine = get_engine()
    if engine is None:
        logger.debug(f"Engine not running; dropping {event.get('type')} event for {namespace}/{name}")
        return
    engine.enqueue(ObjectKey(namespace=namespace, name=name))
