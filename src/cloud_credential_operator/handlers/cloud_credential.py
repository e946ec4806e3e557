"""Watch handlers for the cluster-scoped CloudCredential record."""

from __future__ import annotations

import logging
from typing import Any

import kopf

from ..constants import API_GROUP_VERSION, KIND_CLOUD_CREDENTIAL
from .shared import get_engine

logger = logging.getLogger(__name__)


@kopf.on.event(API_GROUP_VERSION, KIND_CLOUD_CREDENTIAL)
def on_cloud_credential_event(event: dict[str, Any], name: str, **_: Any) -> None:
    """Any change to cluster configuration can change the mode: re-derive it for every record."""
    engine = get_engine()
    if engine is None:
        return
    if name != engine.config.cluster_config_name:
        logger.debug(f"Ignoring CloudCredential {name}; watching {engine.config.cluster_config_name}")
        return
    engine.resync()
