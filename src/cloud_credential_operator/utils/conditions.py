"""Utilities for managing Kubernetes conditions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ..constants import (
    COND_CREDENTIALS_PROVISIONED,
    COND_DEGRADED,
    COND_READY,
    REASON_AS_EXPECTED,
)


def update_condition(
    conditions: list[dict[str, Any]],
    condition_type: str,
    status: str,
    reason: str,
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Update or add a condition to the conditions list.

    Args:
        conditions: List of existing conditions
        condition_type: Type of condition
        status: Status of condition ("True", "False", "Unknown")
        reason: Reason for the condition
        message: Human-readable message
        observed_generation: Generation when condition was observed

    Returns:
        Updated list of conditions
    """
    now = datetime.now(timezone.utc).isoformat()

    existing_idx = None
    for idx, cond in enumerate(conditions):
        if cond.get("type") == condition_type:
            existing_idx = idx
            break

    new_condition = {
        "type": condition_type,
        "status": status,
        "reason": reason,
        "message": message,
        "lastTransitionTime": now,
    }

    if observed_generation is not None:
        new_condition["observedGeneration"] = observed_generation

    if existing_idx is not None:
        existing = conditions[existing_idx]
        # Only update lastTransitionTime if status changed
        if existing.get("status") == status:
            new_condition["lastTransitionTime"] = existing.get("lastTransitionTime", now)
        conditions[existing_idx] = new_condition
    else:
        conditions.append(new_condition)

    return conditions


def get_condition(conditions: list[dict[str, Any]], condition_type: str) -> dict[str, Any] | None:
    """Return the condition of the given type, if present."""
    for cond in conditions:
        if cond.get("type") == condition_type:
            return cond
    return None


def is_condition_true(conditions: list[dict[str, Any]], condition_type: str) -> bool:
    """Check whether a condition is present with status True."""
    cond = get_condition(conditions, condition_type)
    return cond is not None and cond.get("status") == "True"


def set_ready_condition(
    conditions: list[dict[str, Any]],
    status: bool,
    message: str,
    observed_generation: int | None = None,
    reason: str | None = None,
) -> list[dict[str, Any]]:
    """Set the Ready condition."""
    return update_condition(
        conditions,
        COND_READY,
        "True" if status else "False",
        reason or ("Ready" if status else "NotReady"),
        message,
        observed_generation,
    )


def set_provisioned_condition(
    conditions: list[dict[str, Any]],
    status: bool,
    reason: str,
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set the CredentialsProvisioned condition."""
    return update_condition(
        conditions,
        COND_CREDENTIALS_PROVISIONED,
        "True" if status else "False",
        reason,
        message,
        observed_generation,
    )


def set_degraded_condition(
    conditions: list[dict[str, Any]],
    reason: str,
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set the Degraded condition to True."""
    return update_condition(
        conditions,
        COND_DEGRADED,
        "True",
        reason,
        message,
        observed_generation,
    )


def clear_degraded_condition(
    conditions: list[dict[str, Any]],
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set the Degraded condition to False."""
    return update_condition(
        conditions,
        COND_DEGRADED,
        "False",
        REASON_AS_EXPECTED,
        "",
        observed_generation,
    )
