"""Cluster-wide credentials mode detection."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from .. import metrics
from ..actuators import ActuatorRegistry
from ..constants import REASON_INSUFFICIENT_ROOT_PERMISSIONS, REASON_ROOT_CREDENTIAL_INVALID
from ..exceptions import AuthorizationError, CredentialsError, ValidationError
from ..models import ClusterSettings, Mode, ModeDecision
from .store import ClusterConfigSource, RootCredentialSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _CacheEntry:
    key: tuple
    expires_at: float
    decision: ModeDecision | None = None
    error: CredentialsError | None = None

    def result(self) -> ModeDecision:
        if self.error is not None:
            raise self.error
        assert self.decision is not None
        return self.decision


@dataclass(frozen=True)
class _InsufficientPermissions:
    root_version: str
    reported_at: float


class ModeDetector:
    """Decide the active mode from overrides and the root credential.

    Resolution order:

    1. process override (``CREDENTIALS_MODE``), then the CloudCredential
       ``spec.credentialsMode`` override; either wins unconditionally
    2. no root credential: Manual
    3. a prior Mint pass reported insufficient permissions: AuthorizationError
    4. root credential fails a live check: AuthorizationError
    5. Mint when the platform's actuator supports it, Passthrough otherwise

    Results, including authorization failures, are cached for ``ttl`` seconds
    keyed by cluster generation and override. Transient failures are not cached.
    Only one caller refreshes at a time; concurrent callers reuse the previous
    result when its key still matches, otherwise they wait for the refresh.
    """

    def __init__(
        self,
        cluster_source: ClusterConfigSource,
        root_source: RootCredentialSource,
        actuators: ActuatorRegistry,
        process_override: Mode | None = None,
        ttl: float = 30.0,
        insufficient_permissions_ttl: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cluster_source = cluster_source
        self.root_source = root_source
        self.actuators = actuators
        self.process_override = process_override
        self.ttl = ttl
        self.insufficient_permissions_ttl = insufficient_permissions_ttl
        self._clock = clock
        self._refresh_lock = threading.Lock()
        self._entry: _CacheEntry | None = None
        self._insufficient: _InsufficientPermissions | None = None

    def _cluster(self) -> ClusterSettings:
        try:
            return self.cluster_source.get()
        except ValueError as e:
            raise ValidationError(f"Invalid CloudCredential configuration: {e}") from e

    def determine_mode(self) -> ModeDecision:
        """Return the active mode with the cluster settings and root credential it was derived from.

        Raises:
            AuthorizationError: If the root credential is invalid or lacks permissions
            TransientCloudError: If the root credential check could not complete
            ValidationError: If the cluster configuration is malformed
        """
        cluster = self._cluster()
        override = self.process_override or cluster.mode_override
        key = (cluster.generation, override)

        entry = self._entry
        if entry is not None and entry.key == key and self._clock() < entry.expires_at:
            return entry.result()

        if self._refresh_lock.acquire(blocking=False):
            try:
                return self._refresh(cluster, key, override)
            finally:
                self._refresh_lock.release()

        # Someone else is refreshing; an expired entry for the same key is still usable.
        if entry is not None and entry.key == key:
            return entry.result()

        with self._refresh_lock:
            entry = self._entry
            if entry is not None and entry.key == key and self._clock() < entry.expires_at:
                return entry.result()
            return self._refresh(cluster, key, override)

    def _refresh(self, cluster: ClusterSettings, key: tuple, override: Mode | None) -> ModeDecision:
        expires_at = self._clock() + self.ttl
        try:
            decision = self._detect(cluster, override)
        except AuthorizationError as e:
            self._entry = _CacheEntry(key=key, expires_at=expires_at, error=e)
            self._record_mode(None)
            raise
        except ValidationError as e:
            self._entry = _CacheEntry(key=key, expires_at=expires_at, error=e)
            raise
        self._entry = _CacheEntry(key=key, expires_at=expires_at, decision=decision)
        self._record_mode(decision.mode)
        return decision

    def _detect(self, cluster: ClusterSettings, override: Mode | None) -> ModeDecision:
        if override is not None:
            root = None if override == Mode.MANUAL else self.root_source.get(cluster)
            logger.debug(f"Credentials mode overridden to {override.value}")
            return ModeDecision(mode=override, cluster=cluster, root_credential=root, overridden=True)

        root = self.root_source.get(cluster)
        if root is None:
            logger.info(f"No root credential for platform {cluster.platform}; using Manual mode")
            return ModeDecision(mode=Mode.MANUAL, cluster=cluster)

        if self._insufficient_permissions_active(root.resource_version):
            raise AuthorizationError(
                "Root credential lacks the permissions needed to mint credentials; "
                "grant them, replace the root credential or set an explicit credentialsMode",
                reason=REASON_INSUFFICIENT_ROOT_PERMISSIONS,
            )

        actuator = self.actuators.for_platform(cluster.platform)
        if actuator is None:
            raise ValidationError(f"No actuator is registered for platform '{cluster.platform}'")

        try:
            actuator.validate_root_credential(root, cluster)
        except AuthorizationError as e:
            if e.reason == AuthorizationError.default_reason:
                e.reason = REASON_ROOT_CREDENTIAL_INVALID
            logger.warning(f"Root credential for {cluster.platform} failed validation: {e.message}")
            raise

        mode = Mode.MINT if actuator.supports_mint else Mode.PASSTHROUGH
        return ModeDecision(mode=mode, cluster=cluster, root_credential=root)

    def _insufficient_permissions_active(self, root_version: str) -> bool:
        signal = self._insufficient
        if signal is None:
            return False
        if signal.root_version != root_version:
            return False
        return self._clock() - signal.reported_at < self.insufficient_permissions_ttl

    def _record_mode(self, mode: Mode | None) -> None:
        for candidate in Mode:
            metrics.credentials_mode.labels(mode=candidate.value).set(1 if candidate == mode else 0)

    def report_insufficient_permissions(self, root_version: str) -> None:
        """Record that a Mint attempt was refused by the cloud backend."""
        logger.warning("Mint attempt failed with an authorization error; surfacing insufficient root permissions")
        self._insufficient = _InsufficientPermissions(root_version=root_version, reported_at=self._clock())
        self._entry = None

    def invalidate(self) -> None:
        """Drop the cached mode and cluster settings; the next call re-derives them."""
        self._entry = None
        self.cluster_source.invalidate()
