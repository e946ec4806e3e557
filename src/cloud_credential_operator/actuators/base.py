"""Actuator contract shared by every cloud provider."""

from __future__ import annotations

import hashlib
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, Optional

from ..builders.client import CloudClient, create_client
from ..constants import REASON_ROOT_CREDENTIAL_INVALID
from ..exceptions import AuthorizationError, ValidationError
from ..models import (
    ActuatorContext,
    ActuatorResult,
    ClusterSettings,
    CredentialsRequest,
    Mode,
    RootCredential,
)
from ..utils.rate_limit import RateLimiterRegistry, TokenBucket

logger = logging.getLogger(__name__)

MAX_CLOUD_NAME_LENGTH = 64
_NAME_HINT_PATTERN = re.compile(r"^[A-Za-z0-9+=,.@_-]+$")

ClientFactory = Callable[[str, ClusterSettings, RootCredential, Optional[TokenBucket]], CloudClient]


def derive_name(request: CredentialsRequest, cluster: ClusterSettings, hint: str | None = None) -> str:
    """Deterministic cloud-side name for a request.

    ``<infrastructureName>-<hint or name>-<hash8>``, where the hash covers the
    record's namespace, name and uid so a recreated record gets a new principal.
    """
    digest = hashlib.sha256(f"{request.key.namespace}/{request.key.name}/{request.uid}".encode()).hexdigest()[:8]
    base = f"{cluster.infrastructure_name}-{hint or request.key.name}"
    return f"{base[: MAX_CLOUD_NAME_LENGTH - len(digest) - 1]}-{digest}"


def validate_name_hint(provider_spec: dict[str, Any], field: str) -> None:
    hint = provider_spec.get(field)
    if hint is None:
        return
    if not isinstance(hint, str) or not _NAME_HINT_PATTERN.match(hint):
        raise ValidationError(f"providerSpec.{field} must contain only alphanumerics and '+=,.@_-', got '{hint}'")


class Actuator(ABC):
    """Converges cloud-side state for one provider kind.

    Actuators return data and never write the record or its status; the
    reconciler persists whatever they hand back.
    """

    kind: str = ""
    platform: str = ""
    supports_mint: bool = False
    supports_token_exchange: bool = False

    access_key_id_field: str = "access-key-id"
    secret_access_key_field: str = "secret-access-key"

    def __init__(
        self,
        limiters: RateLimiterRegistry | None = None,
        client_factory: ClientFactory = create_client,
    ) -> None:
        self.limiters = limiters
        self._client_factory = client_factory

    def supports(self, mode: Mode) -> bool:
        if mode == Mode.MINT:
            return self.supports_mint
        if mode == Mode.TOKEN_EXCHANGE:
            return self.supports_token_exchange
        return mode in (Mode.PASSTHROUGH, Mode.MANUAL)

    def client(self, cluster: ClusterSettings, root: RootCredential | None) -> CloudClient:
        """Client authenticated with the root credential, sharing the provider's token bucket."""
        if root is None:
            raise AuthorizationError(
                f"No root credential available for {self.platform}",
                reason=REASON_ROOT_CREDENTIAL_INVALID,
            )
        limiter = self.limiters.for_provider(self.platform) if self.limiters else None
        try:
            return self._client_factory(self.platform, cluster, root, limiter)
        except ValueError as e:
            raise ValidationError(str(e)) from e

    def validate(self, request: CredentialsRequest) -> None:
        """Static check of the request, made before any cloud call.

        Raises:
            ValidationError: If the request is malformed for this provider
        """
        if request.provider_kind != self.kind:
            raise ValidationError(f"providerSpec.kind '{request.provider_kind}' is not handled by {self.kind}")
        if not request.secret_ref.name:
            raise ValidationError("spec.secretRef.name is required")
        recorded_kind = request.status.get("providerKind")
        if recorded_kind and recorded_kind != request.provider_kind:
            raise ValidationError(
                f"providerSpec.kind is immutable: record was provisioned as {recorded_kind}, "
                f"now declares {request.provider_kind}; delete and recreate the record instead"
            )
        self.validate_provider_spec(request)

    def validate_provider_spec(self, request: CredentialsRequest) -> None:
        """Provider-specific checks; the default accepts any payload."""

    @property
    def required_secret_fields(self) -> tuple[str, ...]:
        """Keys a manually provisioned secret must carry for this provider."""
        return (self.access_key_id_field, self.secret_access_key_field)

    @abstractmethod
    def validate_root_credential(self, root: RootCredential, cluster: ClusterSettings) -> None:
        """Live, authenticated check of the root credential.

        Raises:
            AuthorizationError: If the credential is rejected
            TransientCloudError: If the backend could not be reached
        """

    def _require_supported(self, ctx: ActuatorContext) -> None:
        if not self.supports(ctx.mode) or ctx.mode == Mode.MANUAL:
            raise ValidationError(f"{self.kind} does not support {ctx.mode.value} mode")

    def exists(self, request: CredentialsRequest, ctx: ActuatorContext) -> bool:
        """Whether cloud-side material already exists for the request."""
        self._require_supported(ctx)
        if ctx.mode == Mode.PASSTHROUGH:
            return request.provider_status.get("mode") == Mode.PASSTHROUGH.value
        return self._exists(request, ctx)

    def create(self, request: CredentialsRequest, ctx: ActuatorContext) -> ActuatorResult:
        """Provision cloud-side material; completes partial prior state instead of failing."""
        self._require_supported(ctx)
        if ctx.mode == Mode.PASSTHROUGH:
            return self.passthrough(request, ctx)
        result = self._converge(request, ctx)
        result.created = True
        return result

    def update(self, request: CredentialsRequest, ctx: ActuatorContext) -> ActuatorResult:
        """Reconcile grants; key material only changes when rotation is due."""
        self._require_supported(ctx)
        if ctx.mode == Mode.PASSTHROUGH:
            return self.passthrough(request, ctx)
        return self._converge(request, ctx)

    def passthrough(self, request: CredentialsRequest, ctx: ActuatorContext) -> ActuatorResult:
        """Deliver the root credential as-is; no cloud calls."""
        if ctx.root_credential is None:
            raise AuthorizationError(
                f"Passthrough mode needs a root credential for {self.platform}",
                reason=REASON_ROOT_CREDENTIAL_INVALID,
            )
        return ActuatorResult(
            provider_status={"mode": Mode.PASSTHROUGH.value},
            secret_fields=self.secret_fields(ctx.root_credential.access_key_id, ctx.root_credential.secret_access_key, ctx),
        )

    def _exists(self, request: CredentialsRequest, ctx: ActuatorContext) -> bool:
        raise NotImplementedError

    def _converge(self, request: CredentialsRequest, ctx: ActuatorContext) -> ActuatorResult:
        raise NotImplementedError

    @abstractmethod
    def secret_fields(self, access_key_id: str, secret_access_key: str, ctx: ActuatorContext) -> dict[str, str]:
        """Shape static key material into the provider's secret layout."""

    @abstractmethod
    def delete(self, request: CredentialsRequest, ctx: ActuatorContext) -> None:
        """Tear down cloud-side material; already-gone is success."""


class ActuatorRegistry:
    """Closed set of actuators, looked up by provider kind or platform."""

    def __init__(self, actuators: Iterable[Actuator]) -> None:
        self._by_kind: dict[str, Actuator] = {}
        self._by_platform: dict[str, Actuator] = {}
        for actuator in actuators:
            self._by_kind[actuator.kind] = actuator
            self._by_platform[actuator.platform] = actuator

    def for_kind(self, kind: str) -> Actuator | None:
        return self._by_kind.get(kind)

    def for_platform(self, platform: str) -> Actuator | None:
        return self._by_platform.get(platform)

    @property
    def kinds(self) -> list[str]:
        return sorted(self._by_kind)
