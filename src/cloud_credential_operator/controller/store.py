"""Kubernetes-backed stores for credential requests, secrets and cluster config."""

from __future__ import annotations

import logging
import time
from typing import Any

from kubernetes import client

from .. import metrics
from ..constants import (
    ANNOTATION_FORCE_ROTATION,
    API_GROUP,
    API_VERSION,
    DEFAULT_ROOT_SECRET_NAMES,
    FIELD_MANAGER,
    FINALIZER,
    KIND_CLOUD_CREDENTIAL,
    PLURAL_CLOUD_CREDENTIALS,
    PLURAL_CREDENTIALS_REQUESTS,
    REASON_STORE_UNAVAILABLE,
    ROOT_ACCESS_KEY_ID,
    ROOT_SECRET_ACCESS_KEY,
)
from ..exceptions import StoreConflictError, TargetNamespaceMissingError, TransientCloudError
from ..models import ClusterSettings, CredentialsRequest, Mode, ObjectKey, RootCredential, TargetSecret
from ..utils.cache import get_cached_object, invalidate_cache, make_cache_key, set_cached_object
from ..utils.rate_limit import TokenBucket
from ..utils.secrets import build_secret, decode_secret_data

logger = logging.getLogger(__name__)

_RETRYABLE_STATUSES = {429, 500, 502, 503, 504}


def translate_api_exception(e: client.exceptions.ApiException, operation: str) -> Exception:
    """Map a Kubernetes API failure onto the error taxonomy.

    Returns the original exception when it has no counterpart.
    """
    if e.status == 409:
        return StoreConflictError(f"Conflict during {operation}: {e.reason}")
    if e.status in _RETRYABLE_STATUSES:
        return TransientCloudError(
            f"Kubernetes API unavailable during {operation}: {e.status} {e.reason}",
            reason=REASON_STORE_UNAVAILABLE,
        )
    return e


class _KubernetesStore:
    """Shared plumbing: rate limiting and API call metrics."""

    def __init__(self, limiter: TokenBucket | None = None) -> None:
        self._limiter = limiter

    def _call(self, operation: str, func: Any, **kwargs: Any) -> Any:
        if self._limiter is not None:
            self._limiter.acquire()
        start_time = time.time()
        try:
            result = func(**kwargs)
            metrics.cloud_api_call_total.labels(provider="k8s", operation=operation, result="success").inc()
            return result
        except client.exceptions.ApiException:
            metrics.cloud_api_call_total.labels(provider="k8s", operation=operation, result="error").inc()
            raise
        finally:
            duration = time.time() - start_time
            metrics.cloud_api_call_duration_seconds.labels(provider="k8s", operation=operation).observe(duration)


class CredentialsRequestStore(_KubernetesStore):
    """Read and write CredentialsRequest records.

    Status writes go through the status subresource with the resourceVersion the
    pass started from, so they never race with edits to the desired state.
    """

    def __init__(self, api: client.CustomObjectsApi, limiter: TokenBucket | None = None) -> None:
        super().__init__(limiter)
        self.api = api

    def _common(self, key: ObjectKey) -> dict[str, Any]:
        return {
            "group": API_GROUP,
            "version": API_VERSION,
            "namespace": key.namespace,
            "plural": PLURAL_CREDENTIALS_REQUESTS,
            "name": key.name,
        }

    def get(self, key: ObjectKey) -> CredentialsRequest | None:
        """Fetch the current record, or None if it no longer exists."""
        try:
            body = self._call("get_credentials_request", self.api.get_namespaced_custom_object, **self._common(key))
        except client.exceptions.ApiException as e:
            if e.status == 404:
                return None
            raise translate_api_exception(e, f"get {key}") from e
        return CredentialsRequest.from_body(body)

    def list(self) -> list[CredentialsRequest]:
        """List records across all namespaces."""
        try:
            response = self._call(
                "list_credentials_requests",
                self.api.list_cluster_custom_object,
                group=API_GROUP,
                version=API_VERSION,
                plural=PLURAL_CREDENTIALS_REQUESTS,
            )
        except client.exceptions.ApiException as e:
            raise translate_api_exception(e, "list credentials requests") from e
        return [CredentialsRequest.from_body(item) for item in response.get("items", [])]

    def update_status(self, request: CredentialsRequest, status: dict[str, Any]) -> CredentialsRequest:
        """Replace the status subrecord, checked against the pass's resourceVersion.

        Raises:
            StoreConflictError: If the record changed since it was read
        """
        body = dict(request.body)
        body["metadata"] = dict(body.get("metadata", {}))
        body["metadata"]["resourceVersion"] = request.resource_version
        body["status"] = status
        try:
            updated = self._call(
                "update_credentials_request_status",
                self.api.replace_namespaced_custom_object_status,
                body=body,
                **self._common(request.key),
            )
        except client.exceptions.ApiException as e:
            raise translate_api_exception(e, f"status update of {request.key}") from e
        return CredentialsRequest.from_body(updated)

    def _patch_metadata(self, request: CredentialsRequest, metadata: dict[str, Any], operation: str) -> CredentialsRequest:
        metadata = {**metadata, "resourceVersion": request.resource_version}
        try:
            updated = self._call(
                operation,
                self.api.patch_namespaced_custom_object,
                body={"metadata": metadata},
                **self._common(request.key),
            )
        except client.exceptions.ApiException as e:
            raise translate_api_exception(e, f"{operation} of {request.key}") from e
        return CredentialsRequest.from_body(updated)

    def add_finalizer(self, request: CredentialsRequest) -> CredentialsRequest:
        """Ensure the finalizer is present."""
        if request.has_finalizer:
            return request
        return self._patch_metadata(request, {"finalizers": [*request.finalizers, FINALIZER]}, "add_finalizer")

    def remove_finalizer(self, request: CredentialsRequest) -> CredentialsRequest:
        """Remove the finalizer so the record can disappear."""
        if not request.has_finalizer:
            return request
        remaining = [f for f in request.finalizers if f != FINALIZER]
        return self._patch_metadata(request, {"finalizers": remaining or None}, "remove_finalizer")

    def clear_force_rotation(self, request: CredentialsRequest) -> CredentialsRequest:
        """Drop the force-rotation annotation after a successful cycle."""
        if not request.force_rotation_requested:
            return request
        return self._patch_metadata(request, {"annotations": {ANNOTATION_FORCE_ROTATION: None}}, "clear_force_rotation")


class SecretStore(_KubernetesStore):
    """Get, create, replace and delete target secrets."""

    def __init__(self, api: client.CoreV1Api, limiter: TokenBucket | None = None) -> None:
        super().__init__(limiter)
        self.api = api

    def get(self, ref: ObjectKey) -> TargetSecret | None:
        try:
            secret = self._call("read_secret", self.api.read_namespaced_secret, name=ref.name, namespace=ref.namespace)
        except client.exceptions.ApiException as e:
            if e.status == 404:
                return None
            raise translate_api_exception(e, f"read of secret {ref}") from e
        return TargetSecret(
            ref=ref,
            data=decode_secret_data(secret.data),
            annotations=dict(secret.metadata.annotations or {}),
            labels=dict(secret.metadata.labels or {}),
            resource_version=secret.metadata.resource_version or "",
        )

    def create(
        self,
        ref: ObjectKey,
        data: dict[str, str],
        annotations: dict[str, str],
        labels: dict[str, str],
    ) -> None:
        """Create a secret.

        Raises:
            StoreConflictError: If a secret appeared concurrently
            TargetNamespaceMissingError: If the target namespace does not exist
        """
        body = build_secret(ref.namespace, ref.name, data, annotations, labels)
        try:
            self._call(
                "create_secret",
                self.api.create_namespaced_secret,
                namespace=ref.namespace,
                body=body,
                field_manager=FIELD_MANAGER,
            )
        except client.exceptions.ApiException as e:
            if e.status == 404:
                raise TargetNamespaceMissingError(
                    f"Target namespace '{ref.namespace}' for secret {ref} does not exist"
                ) from e
            raise translate_api_exception(e, f"create of secret {ref}") from e

    def replace(
        self,
        existing: TargetSecret,
        data: dict[str, str],
        annotations: dict[str, str],
        labels: dict[str, str],
    ) -> None:
        """Replace secret content, checked against the observed resourceVersion."""
        ref = existing.ref
        body = build_secret(
            ref.namespace,
            ref.name,
            data,
            {**existing.annotations, **annotations},
            {**existing.labels, **labels},
            resource_version=existing.resource_version or None,
        )
        try:
            self._call(
                "replace_secret",
                self.api.replace_namespaced_secret,
                name=ref.name,
                namespace=ref.namespace,
                body=body,
                field_manager=FIELD_MANAGER,
            )
        except client.exceptions.ApiException as e:
            raise translate_api_exception(e, f"replace of secret {ref}") from e

    def delete(self, ref: ObjectKey) -> None:
        """Delete a secret, treating "already gone" as success."""
        try:
            self._call("delete_secret", self.api.delete_namespaced_secret, name=ref.name, namespace=ref.namespace)
        except client.exceptions.ApiException as e:
            if e.status == 404:
                return
            raise translate_api_exception(e, f"delete of secret {ref}") from e


class ClusterConfigSource(_KubernetesStore):
    """Resolve cluster settings from the CloudCredential record and process defaults."""

    def __init__(
        self,
        api: client.CustomObjectsApi,
        name: str = "cluster",
        default_platform: str = "aws",
        root_credentials_namespace: str = "kube-system",
        infrastructure_name: str = "cluster",
        limiter: TokenBucket | None = None,
    ) -> None:
        super().__init__(limiter)
        self.api = api
        self.name = name
        self.default_platform = default_platform
        self.root_credentials_namespace = root_credentials_namespace
        self.infrastructure_name = infrastructure_name

    @property
    def cache_key(self) -> str:
        return make_cache_key(KIND_CLOUD_CREDENTIAL, "", self.name)

    def invalidate(self) -> None:
        invalidate_cache(self.cache_key)

    def _fetch(self) -> dict[str, Any]:
        cached = get_cached_object(self.cache_key)
        if cached is not None:
            metrics.cloud_api_call_total.labels(provider="k8s", operation="get_cloud_credential", result="cache_hit").inc()
            return cached
        try:
            body = self._call(
                "get_cloud_credential",
                self.api.get_cluster_custom_object,
                group=API_GROUP,
                version=API_VERSION,
                plural=PLURAL_CLOUD_CREDENTIALS,
                name=self.name,
            )
        except client.exceptions.ApiException as e:
            if e.status != 404:
                raise translate_api_exception(e, f"get CloudCredential {self.name}") from e
            body = {}
        set_cached_object(self.cache_key, body)
        return body

    def get(self) -> ClusterSettings:
        """Return the current cluster settings.

        Raises:
            ValueError: If the record declares an unknown credentials mode
        """
        body = self._fetch()
        spec = body.get("spec", {}) or {}
        meta = body.get("metadata", {}) or {}
        platform = (spec.get("platform") or self.default_platform).lower()

        root_ref = spec.get("rootCredentialsSecretRef") or {}
        root_name = root_ref.get("name") or DEFAULT_ROOT_SECRET_NAMES.get(platform)
        root_secret_ref = None
        if root_name:
            root_secret_ref = ObjectKey(
                namespace=root_ref.get("namespace") or self.root_credentials_namespace,
                name=root_name,
            )

        return ClusterSettings(
            platform=platform,
            generation=int(meta.get("generation", 0) or 0),
            mode_override=Mode.parse(spec.get("credentialsMode")),
            root_secret_ref=root_secret_ref,
            infrastructure_name=spec.get("infrastructureName") or self.infrastructure_name,
            region=spec.get("region") or "us-east-1",
            endpoint=spec.get("endpoint"),
            iam_endpoint=spec.get("iamEndpoint"),
            oidc_provider_arn=spec.get("oidcProviderArn"),
            service_account_issuer=spec.get("serviceAccountIssuer"),
        )


class RootCredentialSource:
    """Read the administrator credential secret named by the cluster settings."""

    def __init__(self, secrets: SecretStore) -> None:
        self.secrets = secrets

    def get(self, cluster: ClusterSettings) -> RootCredential | None:
        """Return the root credential, or None if it is absent or incomplete."""
        if cluster.root_secret_ref is None:
            return None
        secret = self.secrets.get(cluster.root_secret_ref)
        if secret is None:
            return None
        access_key_id = secret.data.get(ROOT_ACCESS_KEY_ID, "")
        secret_access_key = secret.data.get(ROOT_SECRET_ACCESS_KEY, "")
        if not access_key_id or not secret_access_key:
            logger.warning(f"Root credential secret {cluster.root_secret_ref} is missing required keys")
            return None
        return RootCredential(
            access_key_id=access_key_id,
            secret_access_key=secret_access_key,
            resource_version=secret.resource_version,
            secret_ref=cluster.root_secret_ref,
        )
