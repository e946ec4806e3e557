"""Data model for credential requests, root credentials and provisioning mode."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .constants import (
    ANNOTATION_FORCE_ROTATION,
    COND_CREDENTIALS_PROVISIONED,
    COND_DEGRADED,
    COND_READY,
    FINALIZER,
)


class Mode(str, Enum):
    """Cluster-wide provisioning strategy."""

    MINT = "Mint"
    PASSTHROUGH = "Passthrough"
    MANUAL = "Manual"
    TOKEN_EXCHANGE = "TokenExchange"

    @classmethod
    def parse(cls, value: str | None) -> Mode | None:
        """Parse a mode name, returning None for empty values.

        Raises:
            ValueError: If the value is not a known mode
        """
        if not value:
            return None
        for mode in cls:
            if mode.value.lower() == value.strip().lower():
                return mode
        raise ValueError(
            f"Unknown credentials mode '{value}', expected one of {', '.join(m.value for m in cls)}"
        )


class RequestState(str, Enum):
    """Per-record lifecycle state, derived from status rather than stored."""

    UNPROVISIONED = "Unprovisioned"
    PROVISIONING = "Provisioning"
    PROVISIONED = "Provisioned"
    DEGRADED = "Degraded"
    DELETING = "Deleting"


@dataclass(frozen=True)
class ObjectKey:
    """Namespace and name of a namespaced object."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> ObjectKey:
        namespace, _, name = value.partition("/")
        if not name:
            raise ValueError(f"Invalid object key '{value}', expected 'namespace/name'")
        return cls(namespace=namespace, name=name)


@dataclass
class CredentialsRequest:
    """Desired state of one credential request, plus its last observed status."""

    key: ObjectKey
    uid: str
    generation: int
    resource_version: str
    provider_spec: dict[str, Any]
    secret_ref: ObjectKey
    service_account_names: list[str]
    status: dict[str, Any]
    annotations: dict[str, str] = field(default_factory=dict)
    finalizers: list[str] = field(default_factory=list)
    deletion_timestamp: str | None = None
    body: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> CredentialsRequest:
        """Build a request from a raw Kubernetes object."""
        meta = body.get("metadata", {}) or {}
        spec = body.get("spec", {}) or {}
        namespace = meta.get("namespace", "default")
        secret_ref = spec.get("secretRef", {}) or {}
        return cls(
            key=ObjectKey(namespace=namespace, name=meta.get("name", "")),
            uid=meta.get("uid", ""),
            generation=int(meta.get("generation", 0) or 0),
            resource_version=str(meta.get("resourceVersion", "")),
            provider_spec=dict(spec.get("providerSpec", {}) or {}),
            secret_ref=ObjectKey(
                namespace=secret_ref.get("namespace") or namespace,
                name=secret_ref.get("name", ""),
            ),
            service_account_names=list(spec.get("serviceAccountNames", []) or []),
            status=dict(body.get("status", {}) or {}),
            annotations=dict(meta.get("annotations", {}) or {}),
            finalizers=list(meta.get("finalizers", []) or []),
            deletion_timestamp=meta.get("deletionTimestamp"),
            body=body,
        )

    @property
    def provider_kind(self) -> str:
        return str(self.provider_spec.get("kind", ""))

    @property
    def provider_status(self) -> dict[str, Any]:
        return dict(self.status.get("providerStatus", {}) or {})

    @property
    def conditions(self) -> list[dict[str, Any]]:
        return list(self.status.get("conditions", []) or [])

    @property
    def deleting(self) -> bool:
        return self.deletion_timestamp is not None

    @property
    def has_finalizer(self) -> bool:
        return FINALIZER in self.finalizers

    @property
    def force_rotation_requested(self) -> bool:
        return ANNOTATION_FORCE_ROTATION in self.annotations

    @property
    def last_sync_generation(self) -> int | None:
        value = self.status.get("lastSyncGeneration")
        return int(value) if value is not None else None

    def condition(self, condition_type: str) -> dict[str, Any] | None:
        for cond in self.conditions:
            if cond.get("type") == condition_type:
                return cond
        return None

    @property
    def state(self) -> RequestState:
        """Derive the lifecycle state from metadata and status conditions."""
        if self.deleting:
            return RequestState.DELETING
        if not self.conditions:
            return RequestState.UNPROVISIONED
        degraded = self.condition(COND_DEGRADED)
        if degraded and degraded.get("status") == "True":
            return RequestState.DEGRADED
        ready = self.condition(COND_READY)
        provisioned = self.condition(COND_CREDENTIALS_PROVISIONED)
        in_sync = self.last_sync_generation == self.generation
        if ready and ready.get("status") == "True" and in_sync:
            return RequestState.PROVISIONED
        if provisioned is None and not self.status.get("provisioned"):
            return RequestState.UNPROVISIONED
        return RequestState.PROVISIONING


@dataclass(frozen=True)
class RootCredential:
    """Administrator credential read from the root secret. Never logged."""

    access_key_id: str
    secret_access_key: str
    resource_version: str = ""
    secret_ref: ObjectKey | None = None

    def __repr__(self) -> str:
        return f"RootCredential(access_key_id='***', secret_ref={self.secret_ref})"


@dataclass(frozen=True)
class ClusterSettings:
    """Cluster-scoped configuration resolved from the CloudCredential record."""

    platform: str
    generation: int = 0
    mode_override: Mode | None = None
    root_secret_ref: ObjectKey | None = None
    infrastructure_name: str = "cluster"
    region: str = "us-east-1"
    endpoint: str | None = None
    iam_endpoint: str | None = None
    oidc_provider_arn: str | None = None
    service_account_issuer: str | None = None


@dataclass(frozen=True)
class ModeDecision:
    """Outcome of mode detection, shared read-only by all workers."""

    mode: Mode
    cluster: ClusterSettings
    root_credential: RootCredential | None = None
    overridden: bool = False


@dataclass
class ActuatorContext:
    """Per-pass inputs an actuator needs beyond the request itself."""

    mode: Mode
    cluster: ClusterSettings
    root_credential: RootCredential | None = None
    current_fields: dict[str, str] | None = None
    recorded_hash: str | None = None
    force_rotation: bool = False


@dataclass
class ActuatorResult:
    """What an actuator hands back to the reconciler: never written by the actuator."""

    provider_status: dict[str, Any]
    secret_fields: dict[str, str]
    created: bool = False
    rotated: bool = False


@dataclass
class TargetSecret:
    """Observed state of a delivered secret."""

    ref: ObjectKey
    data: dict[str, str]
    annotations: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    resource_version: str = ""
