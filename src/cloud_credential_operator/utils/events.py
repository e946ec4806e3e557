"""Utilities for emitting Kubernetes events."""

from __future__ import annotations

import logging
from typing import Any

import kopf

from ..constants import (
    EVENT_REASON_CREDENTIALS_CREATED,
    EVENT_REASON_CREDENTIALS_DELETED,
    EVENT_REASON_CREDENTIALS_ROTATED,
    EVENT_REASON_DRIFT_REPAIRED,
    EVENT_REASON_MANUAL_ACTION_REQUIRED,
    EVENT_REASON_RECONCILE_FAILED,
    EVENT_REASON_RECONCILE_STARTED,
    EVENT_REASON_SECRET_SYNCED,
    EVENT_REASON_VALIDATE_FAILED,
)
from .errors import sanitize_error_message

logger = logging.getLogger(__name__)


def emit_event(
    body: dict[str, Any],
    reason: str,
    message: str,
    type_: str = "Normal",
) -> None:
    """Emit a Kubernetes event.

    Args:
        body: Involved object (needs apiVersion, kind and metadata)
        reason: Event reason
        message: Event message
        type_: Event type (Normal or Warning)
    """
    try:
        kopf.event(
            body,
            reason=reason,
            message=sanitize_error_message(message),
            type=type_,
        )
    except LookupError:
        # Outside the operator's event loop context (e.g. CLI use); events are best-effort.
        logger.debug(f"Event {reason} not posted: no operator context")


def emit_reconcile_started(body: dict[str, Any]) -> None:
    """Emit reconcile started event."""
    emit_event(body, EVENT_REASON_RECONCILE_STARTED, "Reconciliation started")


def emit_reconcile_failed(body: dict[str, Any], message: str) -> None:
    """Emit reconcile failed event."""
    emit_event(body, EVENT_REASON_RECONCILE_FAILED, message, type_="Warning")


def emit_validate_failed(body: dict[str, Any], message: str) -> None:
    """Emit validation failed event."""
    emit_event(body, EVENT_REASON_VALIDATE_FAILED, message, type_="Warning")


def emit_credentials_created(body: dict[str, Any], mode: str) -> None:
    """Emit credentials created event."""
    emit_event(body, EVENT_REASON_CREDENTIALS_CREATED, f"Credentials provisioned in {mode} mode")


def emit_credentials_rotated(body: dict[str, Any]) -> None:
    """Emit credentials rotated event."""
    emit_event(body, EVENT_REASON_CREDENTIALS_ROTATED, "Credential key material rotated")


def emit_secret_synced(body: dict[str, Any], secret: str) -> None:
    """Emit secret synced event."""
    emit_event(body, EVENT_REASON_SECRET_SYNCED, f"Secret {secret} written")


def emit_drift_repaired(body: dict[str, Any], secret: str) -> None:
    """Emit drift repaired event."""
    emit_event(body, EVENT_REASON_DRIFT_REPAIRED, f"Secret {secret} was modified externally and restored", type_="Warning")


def emit_credentials_deleted(body: dict[str, Any]) -> None:
    """Emit credentials deleted event."""
    emit_event(body, EVENT_REASON_CREDENTIALS_DELETED, "Cloud credentials removed")


def emit_manual_action_required(body: dict[str, Any], message: str) -> None:
    """Emit manual action required event."""
    emit_event(body, EVENT_REASON_MANUAL_ACTION_REQUIRED, message, type_="Warning")
