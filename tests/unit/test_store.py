"""Tests for the Kubernetes-backed stores."""

from __future__ import annotations

import base64
from unittest.mock import MagicMock

import pytest
from kubernetes import client
from kubernetes.client.exceptions import ApiException

from cloud_credential_operator.constants import (
    ANNOTATION_FORCE_ROTATION,
    API_GROUP,
    FINALIZER,
    REASON_STORE_UNAVAILABLE,
)
from cloud_credential_operator.controller.store import (
    ClusterConfigSource,
    CredentialsRequestStore,
    RootCredentialSource,
    SecretStore,
    translate_api_exception,
)
from cloud_credential_operator.exceptions import (
    StoreConflictError,
    TargetNamespaceMissingError,
    TransientCloudError,
)
from cloud_credential_operator.models import ClusterSettings, Mode, ObjectKey, TargetSecret

from conftest import make_request, make_request_body


def b64(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


def v1_secret(data: dict[str, str], resource_version: str = "5") -> client.V1Secret:
    return client.V1Secret(
        metadata=client.V1ObjectMeta(name="s", namespace="apps", annotations={"a": "b"}, resource_version=resource_version),
        data={k: b64(v) for k, v in data.items()},
    )


class TestTranslateApiException:
    """Test cases for translate_api_exception."""

    def test_conflict(self):
        """Test that 409 becomes a store conflict."""
        assert isinstance(translate_api_exception(ApiException(status=409), "update"), StoreConflictError)

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_unavailable(self, status):
        """Test that throttling and server errors are transient."""
        error = translate_api_exception(ApiException(status=status), "update")
        assert isinstance(error, TransientCloudError)
        assert error.reason == REASON_STORE_UNAVAILABLE

    def test_other_passthrough(self):
        """Test that other failures are returned unchanged."""
        original = ApiException(status=403)
        assert translate_api_exception(original, "update") is original


class TestCredentialsRequestStore:
    """Test cases for CredentialsRequestStore."""

    def test_get_missing(self):
        """Test that a deleted record reads as None."""
        api = MagicMock()
        api.get_namespaced_custom_object.side_effect = ApiException(status=404)
        assert CredentialsRequestStore(api).get(ObjectKey("apps", "gone")) is None

    def test_get_parses_record(self):
        """Test that a fetched body becomes a CredentialsRequest."""
        api = MagicMock()
        api.get_namespaced_custom_object.return_value = make_request_body(generation=4)

        request = CredentialsRequestStore(api).get(ObjectKey("apps", "app-creds"))

        assert request.generation == 4
        assert api.get_namespaced_custom_object.call_args.kwargs["group"] == API_GROUP

    def test_list(self):
        """Test listing across namespaces."""
        api = MagicMock()
        api.list_cluster_custom_object.return_value = {"items": [make_request_body(name="a"), make_request_body(name="b")]}

        assert [r.key.name for r in CredentialsRequestStore(api).list()] == ["a", "b"]

    def test_update_status_sends_resource_version(self):
        """Test that status replacement is checked against the pass's resourceVersion."""
        api = MagicMock()
        api.replace_namespaced_custom_object_status.return_value = make_request_body(status={"provisioned": True})
        request = make_request()

        updated = CredentialsRequestStore(api).update_status(request, {"provisioned": True})

        body = api.replace_namespaced_custom_object_status.call_args.kwargs["body"]
        assert body["metadata"]["resourceVersion"] == "1"
        assert body["status"] == {"provisioned": True}
        assert updated.status == {"provisioned": True}

    def test_update_status_conflict(self):
        """Test that a stale resourceVersion surfaces as a store conflict."""
        api = MagicMock()
        api.replace_namespaced_custom_object_status.side_effect = ApiException(status=409)

        with pytest.raises(StoreConflictError):
            CredentialsRequestStore(api).update_status(make_request(), {})

    def test_add_finalizer(self):
        """Test that the finalizer is added with a merge patch."""
        api = MagicMock()
        api.patch_namespaced_custom_object.return_value = make_request_body(finalizers=[FINALIZER])

        CredentialsRequestStore(api).add_finalizer(make_request(finalizers=["other"]))

        metadata = api.patch_namespaced_custom_object.call_args.kwargs["body"]["metadata"]
        assert metadata["finalizers"] == ["other", FINALIZER]
        assert metadata["resourceVersion"] == "1"

    def test_finalizer_noops(self):
        """Test that present or absent finalizers cause no API calls."""
        api = MagicMock()
        store = CredentialsRequestStore(api)

        store.add_finalizer(make_request(finalizers=[FINALIZER]))
        store.remove_finalizer(make_request())
        store.clear_force_rotation(make_request())

        api.patch_namespaced_custom_object.assert_not_called()

    def test_remove_last_finalizer(self):
        """Test that removing the only finalizer clears the list."""
        api = MagicMock()
        api.patch_namespaced_custom_object.return_value = make_request_body()

        CredentialsRequestStore(api).remove_finalizer(make_request(finalizers=[FINALIZER]))

        assert api.patch_namespaced_custom_object.call_args.kwargs["body"]["metadata"]["finalizers"] is None

    def test_clear_force_rotation(self):
        """Test that the annotation is removed by patching it to null."""
        api = MagicMock()
        api.patch_namespaced_custom_object.return_value = make_request_body()

        CredentialsRequestStore(api).clear_force_rotation(make_request(annotations={ANNOTATION_FORCE_ROTATION: "now"}))

        annotations = api.patch_namespaced_custom_object.call_args.kwargs["body"]["metadata"]["annotations"]
        assert annotations == {ANNOTATION_FORCE_ROTATION: None}

    def test_limiter_used(self):
        """Test that every call takes a token from the Kubernetes bucket."""
        api = MagicMock()
        api.list_cluster_custom_object.return_value = {"items": []}
        limiter = MagicMock()

        CredentialsRequestStore(api, limiter).list()

        limiter.acquire.assert_called_once()


class TestSecretStore:
    """Test cases for SecretStore."""

    def test_get_decodes(self):
        """Test that data is decoded and metadata captured."""
        api = MagicMock()
        api.read_namespaced_secret.return_value = v1_secret({"aws_access_key_id": "AKIA"})

        secret = SecretStore(api).get(ObjectKey("apps", "s"))

        assert secret.data == {"aws_access_key_id": "AKIA"}
        assert secret.annotations == {"a": "b"}
        assert secret.resource_version == "5"

    def test_get_missing(self):
        """Test that a missing secret reads as None."""
        api = MagicMock()
        api.read_namespaced_secret.side_effect = ApiException(status=404)
        assert SecretStore(api).get(ObjectKey("apps", "s")) is None

    def test_create_missing_namespace(self):
        """Test that a missing namespace is reported distinctly."""
        api = MagicMock()
        api.create_namespaced_secret.side_effect = ApiException(status=404)

        with pytest.raises(TargetNamespaceMissingError):
            SecretStore(api).create(ObjectKey("nowhere", "s"), {"k": "v"}, {}, {})

    def test_create_conflict(self):
        """Test that a concurrently created secret is a store conflict."""
        api = MagicMock()
        api.create_namespaced_secret.side_effect = ApiException(status=409)

        with pytest.raises(StoreConflictError):
            SecretStore(api).create(ObjectKey("apps", "s"), {"k": "v"}, {}, {})

    def test_replace_merges_metadata(self):
        """Test that replacement keeps foreign annotations and checks the resourceVersion."""
        api = MagicMock()
        existing = TargetSecret(ObjectKey("apps", "s"), {"k": "old"}, {"keep": "me"}, {"l": "1"}, "9")

        SecretStore(api).replace(existing, {"k": "new"}, {"owner": "apps/app"}, {})

        body = api.replace_namespaced_secret.call_args.kwargs["body"]
        assert body.metadata.annotations == {"keep": "me", "owner": "apps/app"}
        assert body.metadata.resource_version == "9"
        assert body.data == {"k": b64("new")}

    def test_delete_already_gone(self):
        """Test that deleting a missing secret succeeds."""
        api = MagicMock()
        api.delete_namespaced_secret.side_effect = ApiException(status=404)
        SecretStore(api).delete(ObjectKey("apps", "s"))

    def test_delete_unavailable(self):
        """Test that an API outage during delete is transient."""
        api = MagicMock()
        api.delete_namespaced_secret.side_effect = ApiException(status=503)

        with pytest.raises(TransientCloudError):
            SecretStore(api).delete(ObjectKey("apps", "s"))


class TestClusterConfigSource:
    """Test cases for ClusterConfigSource."""

    def test_defaults_when_absent(self):
        """Test that an absent record yields process defaults and the default root secret."""
        api = MagicMock()
        api.get_cluster_custom_object.side_effect = ApiException(status=404)

        settings = ClusterConfigSource(api, default_platform="wasabi").get()

        assert settings.platform == "wasabi"
        assert settings.mode_override is None
        assert settings.root_secret_ref == ObjectKey("kube-system", "wasabi-creds")

    def test_parses_spec(self):
        """Test that record fields are applied."""
        api = MagicMock()
        api.get_cluster_custom_object.return_value = {
            "metadata": {"generation": 7},
            "spec": {
                "platform": "AWS",
                "credentialsMode": "Manual",
                "rootCredentialsSecretRef": {"name": "admin", "namespace": "ops"},
                "region": "eu-west-1",
                "oidcProviderArn": "arn:aws:iam::1:oidc-provider/x",
            },
        }

        settings = ClusterConfigSource(api).get()

        assert settings.platform == "aws"
        assert settings.generation == 7
        assert settings.mode_override is Mode.MANUAL
        assert settings.root_secret_ref == ObjectKey("ops", "admin")
        assert settings.region == "eu-west-1"
        assert settings.oidc_provider_arn == "arn:aws:iam::1:oidc-provider/x"

    def test_cached_until_invalidated(self):
        """Test that the record is fetched once until invalidated."""
        api = MagicMock()
        api.get_cluster_custom_object.return_value = {"spec": {}}
        source = ClusterConfigSource(api)

        source.get()
        source.get()
        assert api.get_cluster_custom_object.call_count == 1

        source.invalidate()
        source.get()
        assert api.get_cluster_custom_object.call_count == 2

    def test_unavailable(self):
        """Test that an API outage is transient."""
        api = MagicMock()
        api.get_cluster_custom_object.side_effect = ApiException(status=500)

        with pytest.raises(TransientCloudError):
            ClusterConfigSource(api).get()

    def test_fetch_takes_kubernetes_token(self):
        """Test that a cache miss is rate limited and a cache hit is not."""
        api = MagicMock()
        api.get_cluster_custom_object.return_value = {"spec": {}}
        limiter = MagicMock()
        source = ClusterConfigSource(api, limiter=limiter)

        source.get()
        source.get()

        limiter.acquire.assert_called_once()


class TestRootCredentialSource:
    """Test cases for RootCredentialSource."""

    cluster = ClusterSettings(platform="aws", root_secret_ref=ObjectKey("kube-system", "aws-creds"))

    def test_reads_credential(self):
        """Test that a complete root secret is returned with its resourceVersion."""
        secrets = MagicMock()
        secrets.get.return_value = TargetSecret(
            self.cluster.root_secret_ref,
            {"aws_access_key_id": "AKIAROOT", "aws_secret_access_key": "s"},
            resource_version="42",
        )

        root = RootCredentialSource(secrets).get(self.cluster)

        assert root.access_key_id == "AKIAROOT"
        assert root.resource_version == "42"

    def test_incomplete_credential(self):
        """Test that a secret missing a key counts as absent."""
        secrets = MagicMock()
        secrets.get.return_value = TargetSecret(self.cluster.root_secret_ref, {"aws_access_key_id": "AKIAROOT"})
        assert RootCredentialSource(secrets).get(self.cluster) is None

    def test_missing_secret(self):
        """Test that a missing secret is absent."""
        secrets = MagicMock()
        secrets.get.return_value = None
        assert RootCredentialSource(secrets).get(self.cluster) is None
