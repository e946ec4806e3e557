"""Target secret synchronization with content-hash drift detection."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from .. import metrics
from ..constants import (
    ANNOTATION_CONTENT_HASH,
    ANNOTATION_CREDENTIALS_REQUEST,
    ANNOTATION_LAST_ROTATION,
    CONTROLLER_NAME,
    LABEL_MANAGED_BY,
)
from ..exceptions import ConflictError
from ..models import CredentialsRequest, ObjectKey, TargetSecret
from ..tracing import trace_span
from ..utils.secrets import content_hash
from .store import SecretStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a sync; truthy when the secret was written."""

    changed: bool
    created: bool = False
    drift: bool = False

    def __bool__(self) -> bool:
        return self.changed


class SecretSynchronizer:
    """Create and update target secrets owned by credential requests.

    A secret is only ever written when it is absent or carries the owning
    record's annotation. Anything else is a ConflictError and is left untouched.
    """

    def __init__(self, secrets: SecretStore) -> None:
        self.secrets = secrets

    @staticmethod
    def owner_id(owner: CredentialsRequest) -> str:
        return str(owner.key)

    def check_ownership(self, ref: ObjectKey, owner: CredentialsRequest) -> TargetSecret | None:
        """Read the target secret, failing if someone else owns it.

        Returns:
            The existing secret, or None if there is none yet

        Raises:
            ConflictError: If the secret exists without this record's ownership annotation
        """
        existing = self.secrets.get(ref)
        if existing is not None:
            self._ensure_owned(existing, owner)
        return existing

    def _ensure_owned(self, existing: TargetSecret, owner: CredentialsRequest) -> None:
        recorded = existing.annotations.get(ANNOTATION_CREDENTIALS_REQUEST)
        if recorded == self.owner_id(owner):
            return
        metrics.secret_sync_total.labels(result="conflict").inc()
        if recorded:
            raise ConflictError(
                f"Secret {existing.ref} is owned by CredentialsRequest {recorded}, not {self.owner_id(owner)}"
            )
        raise ConflictError(
            f"Secret {existing.ref} already exists and is not managed by this operator; "
            f"remove it or point secretRef elsewhere"
        )

    def sync(self, ref: ObjectKey, desired_fields: dict[str, str], owner: CredentialsRequest) -> SyncResult:
        """Converge the secret at ``ref`` onto ``desired_fields``.

        Raises:
            ConflictError: If the secret exists and is not owned by ``owner``
            StoreConflictError: If the secret changed concurrently
            TargetNamespaceMissingError: If the target namespace does not exist
        """
        with trace_span("secret.sync", attributes={"secret.namespace": ref.namespace, "secret.name": ref.name}):
            desired_hash = content_hash(desired_fields)
            annotations = {
                ANNOTATION_CREDENTIALS_REQUEST: self.owner_id(owner),
                ANNOTATION_CONTENT_HASH: desired_hash,
                ANNOTATION_LAST_ROTATION: datetime.now(timezone.utc).isoformat(),
            }
            labels = {LABEL_MANAGED_BY: CONTROLLER_NAME}

            existing = self.secrets.get(ref)
            if existing is None:
                self.secrets.create(ref, desired_fields, annotations, labels)
                metrics.secret_sync_total.labels(result="created").inc()
                logger.info(f"Created secret {ref} for {owner.key}")
                return SyncResult(changed=True, created=True)

            self._ensure_owned(existing, owner)

            recorded_hash = existing.annotations.get(ANNOTATION_CONTENT_HASH)
            observed_hash = content_hash(existing.data)
            if recorded_hash == desired_hash and observed_hash == desired_hash:
                metrics.secret_sync_total.labels(result="unchanged").inc()
                return SyncResult(changed=False)

            drift = observed_hash != recorded_hash
            if drift:
                metrics.drift_detected_total.labels(kind="content", resource_type="secret").inc()
                logger.warning(f"Secret {ref} was modified outside the operator; restoring it")

            self.secrets.replace(existing, desired_fields, annotations, labels)
            metrics.secret_sync_total.labels(result="updated").inc()
            logger.info(f"Updated secret {ref} for {owner.key}")
            return SyncResult(changed=True, drift=drift)

    def verify_manual(
        self,
        ref: ObjectKey,
        owner: CredentialsRequest,
        required_fields: tuple[str, ...] = (),
    ) -> str | None:
        """Check a manually provisioned secret.

        Returns:
            None when the secret exists, carries this record's ownership
            annotation and has a non-empty value for every required field,
            otherwise a description of what is missing
        """
        existing = self.secrets.get(ref)
        if existing is None:
            return f"Secret {ref} does not exist; provision it manually for Manual mode"
        recorded = existing.annotations.get(ANNOTATION_CREDENTIALS_REQUEST)
        if recorded != self.owner_id(owner):
            return (
                f"Secret {ref} exists but is not annotated "
                f"{ANNOTATION_CREDENTIALS_REQUEST}={self.owner_id(owner)}"
            )
        if not existing.data:
            return f"Secret {ref} has no credential data"
        missing = [name for name in required_fields if not existing.data.get(name)]
        if missing:
            return f"Secret {ref} is missing required keys: {', '.join(missing)}"
        return None

    def delete_owned(self, ref: ObjectKey, owner: CredentialsRequest) -> bool:
        """Delete the target secret if, and only if, ``owner`` owns it."""
        existing = self.secrets.get(ref)
        if existing is None:
            return False
        if existing.annotations.get(ANNOTATION_CREDENTIALS_REQUEST) != self.owner_id(owner):
            logger.info(f"Leaving secret {ref} in place: not owned by {owner.key}")
            return False
        self.secrets.delete(ref)
        logger.info(f"Deleted secret {ref} owned by {owner.key}")
        return True
