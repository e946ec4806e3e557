"""Watch handlers for target and root credential secrets."""

from __future__ import annotations

import logging
from typing import Any

import kopf

from ..constants import ANNOTATION_CREDENTIALS_REQUEST
from ..models import ObjectKey
from .shared import get_engine

logger = logging.getLogger(__name__)


def is_root_secret(name: str, namespace: str, **_: Any) -> bool:
    engine = get_engine()
    return engine is not None and engine.is_root_secret(namespace, name)


@kopf.on.event("v1", "secrets", annotations={ANNOTATION_CREDENTIALS_REQUEST: kopf.PRESENT})
def on_owned_secret_event(
    event: dict[str, Any],
    annotations: dict[str, str],
    name: str,
    namespace: str,
    **_: Any,
) -> None:
    """Queue the owning record so drift is repaired and manual secrets are noticed."""
    engine = get_engine()
    if engine is None:
        return
    owner = annotations.get(ANNOTATION_CREDENTIALS_REQUEST, "")
    try:
        key = ObjectKey.parse(owner)
    except ValueError:
        logger.warning(f"Secret {namespace}/{name} carries malformed owner annotation '{owner}'")
        return
    engine.enqueue(key)


@kopf.on.event("v1", "secrets", when=is_root_secret)
def on_root_secret_event(event: dict[str, Any], name: str, namespace: str, **_: Any) -> None:
    """A changed root credential can change the mode and every minted credential."""
    engine = get_engine()
    if engine is None:
        return
    logger.info(f"Root credential secret {namespace}/{name} changed ({event.get('type') or 'listed'})")
    engine.resync()
