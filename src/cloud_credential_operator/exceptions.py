"""Error taxonomy for credential provisioning.

Actuators, the secret synchronizer and the mode detector raise these; the
reconciler is the only place that turns them into conditions and retry cadence.
"""

from __future__ import annotations

from .constants import (
    REASON_AUTHORIZATION_FAILED,
    REASON_CLOUD_UNAVAILABLE,
    REASON_SECRET_CONFLICT,
    REASON_STORE_CONFLICT,
    REASON_TARGET_NAMESPACE_MISSING,
    REASON_VALIDATION_FAILED,
)


class CredentialsError(Exception):
    """Base class for all classified provisioning failures."""

    default_reason = REASON_VALIDATION_FAILED
    transient = False

    def __init__(self, message: str, reason: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason or self.default_reason


class ValidationError(CredentialsError):
    """Desired state is malformed; never corrects itself without a spec change."""

    default_reason = REASON_VALIDATION_FAILED


class AuthorizationError(CredentialsError):
    """Root credential is missing permissions, invalid or expired."""

    default_reason = REASON_AUTHORIZATION_FAILED


class TransientCloudError(CredentialsError):
    """Throttling, timeouts and eventual-consistency lag."""

    default_reason = REASON_CLOUD_UNAVAILABLE
    transient = True


class ConflictError(CredentialsError):
    """Target secret exists and is not owned by the requesting record."""

    default_reason = REASON_SECRET_CONFLICT


class StoreConflictError(CredentialsError):
    """Optimistic-concurrency failure on a record or secret write."""

    default_reason = REASON_STORE_CONFLICT
    transient = True


class TargetNamespaceMissingError(CredentialsError):
    """The namespace named by secretRef does not exist."""

    default_reason = REASON_TARGET_NAMESPACE_MISSING
