"""Tests for the boto3 IAM and S3 client wrappers."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from cloud_credential_operator.exceptions import AuthorizationError, TransientCloudError
from cloud_credential_operator.services.aws.client import IAMClient, S3Client


def client_error(code: str, status: int = 400) -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        "Operation",
    )


@pytest.fixture
def boto_iam():
    return MagicMock()


@pytest.fixture
def iam(boto_iam):
    return IAMClient(boto_iam, "aws", sts_client=MagicMock())


class TestIAMClientUsers:
    """Test cases for user primitives."""

    def test_get_user_missing_returns_none(self, iam, boto_iam):
        """Test that NoSuchEntity maps to None."""
        boto_iam.get_user.side_effect = client_error("NoSuchEntity", 404)
        assert iam.get_user("prod-app-1234") is None

    def test_get_user_returns_user(self, iam, boto_iam):
        """Test that an existing user is returned."""
        boto_iam.get_user.return_value = {"User": {"UserName": "prod-app", "Arn": "arn"}}
        assert iam.get_user("prod-app")["Arn"] == "arn"
        boto_iam.get_user.assert_called_once_with(UserName="prod-app")

    def test_create_user_sends_tags(self, iam, boto_iam):
        """Test that tags are sent sorted as Key/Value pairs."""
        boto_iam.create_user.return_value = {"User": {"UserName": "u"}}

        iam.create_user("u", tags={"b": "2", "a": "1"})

        boto_iam.create_user.assert_called_once_with(
            UserName="u", Tags=[{"Key": "a", "Value": "1"}, {"Key": "b", "Value": "2"}]
        )

    def test_create_user_already_exists_returns_existing(self, iam, boto_iam):
        """Test that a concurrent create resolves to the existing user."""
        boto_iam.create_user.side_effect = client_error("EntityAlreadyExists", 409)
        boto_iam.get_user.return_value = {"User": {"UserName": "u", "Arn": "arn:existing"}}

        assert iam.create_user("u")["Arn"] == "arn:existing"

    def test_access_denied_is_translated(self, iam, boto_iam):
        """Test that permission failures surface as AuthorizationError."""
        boto_iam.create_user.side_effect = client_error("AccessDenied", 403)

        with pytest.raises(AuthorizationError):
            iam.create_user("u")

    def test_throttling_is_translated(self, iam, boto_iam):
        """Test that throttling surfaces as TransientCloudError."""
        boto_iam.list_access_keys.side_effect = client_error("Throttling", 400)

        with pytest.raises(TransientCloudError):
            iam.list_access_keys("u")

    def test_delete_user_removes_keys_and_policies_first(self, iam, boto_iam):
        """Test that a user's keys and inline policies are removed before the user."""
        boto_iam.get_user.return_value = {"User": {"UserName": "u"}}
        boto_iam.list_access_keys.return_value = {"AccessKeyMetadata": [{"AccessKeyId": "AKIA1"}]}
        boto_iam.list_user_policies.return_value = {"PolicyNames": ["u-policy"]}

        iam.delete_user("u")

        boto_iam.delete_access_key.assert_called_once_with(UserName="u", AccessKeyId="AKIA1")
        boto_iam.delete_user_policy.assert_called_once_with(UserName="u", PolicyName="u-policy")
        boto_iam.delete_user.assert_called_once_with(UserName="u")

    def test_delete_missing_user_is_success(self, iam, boto_iam):
        """Test that deleting an already-gone user makes no delete calls."""
        boto_iam.get_user.side_effect = client_error("NoSuchEntity", 404)

        iam.delete_user("u")

        boto_iam.delete_user.assert_not_called()

    def test_delete_access_key_ignores_missing(self, iam, boto_iam):
        """Test that deleting an already-gone key is not an error."""
        boto_iam.delete_access_key.side_effect = client_error("NoSuchEntity", 404)
        iam.delete_access_key("u", "AKIA1")


class TestIAMClientPolicies:
    """Test cases for inline policy handling."""

    def test_put_user_policy_serializes_document(self, iam, boto_iam):
        """Test that policy documents are sent as canonical JSON."""
        document = {"Version": "2012-10-17", "Statement": []}

        iam.put_user_policy("u", "u-policy", document)

        sent = boto_iam.put_user_policy.call_args.kwargs["PolicyDocument"]
        assert json.loads(sent) == document

    def test_get_user_policy_decodes_url_encoded_string(self, iam, boto_iam):
        """Test that url-encoded policy strings are decoded."""
        boto_iam.get_user_policy.return_value = {"PolicyDocument": "%7B%22Version%22%3A%20%222012-10-17%22%7D"}

        assert iam.get_user_policy("u", "p") == {"Version": "2012-10-17"}

    def test_get_user_policy_missing_returns_none(self, iam, boto_iam):
        """Test that an absent inline policy maps to None."""
        boto_iam.get_user_policy.side_effect = client_error("NoSuchEntity", 404)
        assert iam.get_user_policy("u", "p") is None


class TestIAMClientIdentity:
    """Test cases for root credential checks."""

    def test_get_caller_identity_requires_sts(self, boto_iam):
        """Test that identity checks need an STS client."""
        with pytest.raises(ValueError):
            IAMClient(boto_iam, "wasabi").get_caller_identity()

    def test_get_current_user(self, boto_iam):
        """Test that GetUser without a name returns the caller."""
        boto_iam.get_user.return_value = {"User": {"UserName": "root"}}
        assert IAMClient(boto_iam, "wasabi").get_current_user() == {"UserName": "root"}


class TestS3Client:
    """Test cases for S3Client."""

    def test_list_buckets(self):
        """Test that bucket names are returned."""
        s3 = MagicMock()
        s3.list_buckets.return_value = {"Buckets": [{"Name": "a"}, {"Name": "b"}]}
        assert S3Client(s3, "s3compatible").list_buckets() == ["a", "b"]

    def test_invalid_credential(self):
        """Test that a rejected key surfaces as AuthorizationError."""
        s3 = MagicMock()
        s3.list_buckets.side_effect = client_error("InvalidAccessKeyId", 403)
        with pytest.raises(AuthorizationError):
            S3Client(s3, "s3compatible").list_buckets()

    def test_limiter_is_consulted(self):
        """Test that each call takes a token from the provider's bucket."""
        s3 = MagicMock()
        s3.list_buckets.return_value = {"Buckets": []}
        limiter = MagicMock()

        S3Client(s3, "s3compatible", limiter=limiter).list_buckets()

        limiter.acquire.assert_called_once()
