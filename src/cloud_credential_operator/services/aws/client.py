"""boto3 clients for IAM-compatible cloud backends."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable
from urllib.parse import unquote

from botocore.exceptions import BotoCoreError, ClientError

from ... import metrics
from ...exceptions import CredentialsError
from ...utils.rate_limit import TokenBucket
from .errors import is_already_exists, is_not_found, translate_error

logger = logging.getLogger(__name__)


class _RateLimitedClient:
    """Runs every API call through the provider's token bucket, metrics and error translation."""

    def __init__(self, provider: str, limiter: TokenBucket | None = None) -> None:
        self.provider = provider
        self.limiter = limiter

    def _call(self, operation: str, func: Callable[..., Any], **kwargs: Any) -> Any:
        if self.limiter is not None:
            self.limiter.acquire()
        start_time = time.time()
        try:
            response = func(**kwargs)
            metrics.cloud_api_call_total.labels(provider=self.provider, operation=operation, result="success").inc()
            return response
        except (ClientError, BotoCoreError):
            metrics.cloud_api_call_total.labels(provider=self.provider, operation=operation, result="error").inc()
            raise
        finally:
            duration = time.time() - start_time
            metrics.cloud_api_call_duration_seconds.labels(provider=self.provider, operation=operation).observe(duration)

    def _translated(self, operation: str, func: Callable[..., Any], **kwargs: Any) -> Any:
        try:
            return self._call(operation, func, **kwargs)
        except (ClientError, BotoCoreError) as e:
            raise translate_error(e, self.provider, operation) from e


class IAMClient(_RateLimitedClient):
    """IAM user, access key, role and inline policy primitives.

    Methods return None for missing entities and tolerate "already gone" on
    deletes. Every other failure is raised as a classified CredentialsError.
    """

    def __init__(
        self,
        iam_client: Any,
        provider: str,
        limiter: TokenBucket | None = None,
        sts_client: Any | None = None,
    ) -> None:
        super().__init__(provider, limiter)
        self.iam_client = iam_client
        self.sts_client = sts_client

    def _get_or_none(self, operation: str, func: Callable[..., Any], **kwargs: Any) -> Any:
        try:
            return self._call(operation, func, **kwargs)
        except ClientError as e:
            if is_not_found(e):
                return None
            raise translate_error(e, self.provider, operation) from e
        except BotoCoreError as e:
            raise translate_error(e, self.provider, operation) from e

    def _delete_ignoring_missing(self, operation: str, func: Callable[..., Any], **kwargs: Any) -> None:
        try:
            self._call(operation, func, **kwargs)
        except ClientError as e:
            if is_not_found(e):
                logger.debug(f"{operation}: entity already gone")
                return
            raise translate_error(e, self.provider, operation) from e
        except BotoCoreError as e:
            raise translate_error(e, self.provider, operation) from e

    # Identity

    def get_caller_identity(self) -> dict[str, Any]:
        """Authenticate the configured credential against STS."""
        if self.sts_client is None:
            raise ValueError(f"STS is not available for provider {self.provider}")
        return self._translated("get_caller_identity", self.sts_client.get_caller_identity)

    def get_current_user(self) -> dict[str, Any]:
        """Authenticate the configured credential with IAM GetUser on itself."""
        response = self._translated("get_current_user", self.iam_client.get_user)
        return response.get("User", {})

    # Users

    def get_user(self, name: str) -> dict[str, Any] | None:
        response = self._get_or_none("get_user", self.iam_client.get_user, UserName=name)
        return response.get("User") if response else None

    def create_user(self, name: str, tags: dict[str, str] | None = None) -> dict[str, Any]:
        """Create an IAM user, returning the existing one if it is already there."""
        params: dict[str, Any] = {"UserName": name}
        if tags:
            params["Tags"] = [{"Key": k, "Value": v} for k, v in sorted(tags.items())]
        try:
            response = self._call("create_user", self.iam_client.create_user, **params)
            logger.info(f"Created IAM user {name} on {self.provider}")
            return response.get("User", {})
        except ClientError as e:
            if is_already_exists(e):
                existing = self.get_user(name)
                if existing is not None:
                    return existing
            raise translate_error(e, self.provider, "create_user") from e
        except BotoCoreError as e:
            raise translate_error(e, self.provider, "create_user") from e

    def delete_user(self, name: str) -> None:
        """Delete an IAM user after removing its access keys and inline policies."""
        if self.get_user(name) is None:
            return
        for key in self.list_access_keys(name):
            self.delete_access_key(name, key["AccessKeyId"])
        for policy_name in self.list_user_policies(name):
            self._delete_ignoring_missing(
                "delete_user_policy", self.iam_client.delete_user_policy, UserName=name, PolicyName=policy_name
            )
        self._delete_ignoring_missing("delete_user", self.iam_client.delete_user, UserName=name)
        logger.info(f"Deleted IAM user {name} on {self.provider}")

    def get_user_policy(self, user_name: str, policy_name: str) -> dict[str, Any] | None:
        """Return the inline policy document, or None when the policy is absent."""
        response = self._get_or_none(
            "get_user_policy", self.iam_client.get_user_policy, UserName=user_name, PolicyName=policy_name
        )
        return _policy_document(response) if response else None

    def put_user_policy(self, user_name: str, policy_name: str, document: dict[str, Any]) -> None:
        self._translated(
            "put_user_policy",
            self.iam_client.put_user_policy,
            UserName=user_name,
            PolicyName=policy_name,
            PolicyDocument=_dump_policy(document),
        )

    def list_user_policies(self, user_name: str) -> list[str]:
        response = self._get_or_none("list_user_policies", self.iam_client.list_user_policies, UserName=user_name)
        return list((response or {}).get("PolicyNames", []))

    # Access keys

    def list_access_keys(self, user_name: str) -> list[dict[str, Any]]:
        """List access key metadata (never secrets) for a user."""
        response = self._get_or_none("list_access_keys", self.iam_client.list_access_keys, UserName=user_name)
        return list((response or {}).get("AccessKeyMetadata", []))

    def create_access_key(self, user_name: str) -> dict[str, Any]:
        """Create an access key; the secret is only ever visible in this response."""
        response = self._translated("create_access_key", self.iam_client.create_access_key, UserName=user_name)
        return response["AccessKey"]

    def delete_access_key(self, user_name: str, access_key_id: str) -> None:
        self._delete_ignoring_missing(
            "delete_access_key", self.iam_client.delete_access_key, UserName=user_name, AccessKeyId=access_key_id
        )

    # Roles

    def get_role(self, name: str) -> dict[str, Any] | None:
        response = self._get_or_none("get_role", self.iam_client.get_role, RoleName=name)
        return response.get("Role") if response else None

    def create_role(self, name: str, trust_policy: dict[str, Any], tags: dict[str, str] | None = None) -> dict[str, Any]:
        """Create a role, returning the existing one if it is already there."""
        params: dict[str, Any] = {"RoleName": name, "AssumeRolePolicyDocument": _dump_policy(trust_policy)}
        if tags:
            params["Tags"] = [{"Key": k, "Value": v} for k, v in sorted(tags.items())]
        try:
            response = self._call("create_role", self.iam_client.create_role, **params)
            logger.info(f"Created IAM role {name} on {self.provider}")
            return response.get("Role", {})
        except ClientError as e:
            if is_already_exists(e):
                existing = self.get_role(name)
                if existing is not None:
                    return existing
            raise translate_error(e, self.provider, "create_role") from e
        except BotoCoreError as e:
            raise translate_error(e, self.provider, "create_role") from e

    def update_assume_role_policy(self, name: str, trust_policy: dict[str, Any]) -> None:
        self._translated(
            "update_assume_role_policy",
            self.iam_client.update_assume_role_policy,
            RoleName=name,
            PolicyDocument=_dump_policy(trust_policy),
        )

    def get_role_policy(self, role_name: str, policy_name: str) -> dict[str, Any] | None:
        response = self._get_or_none(
            "get_role_policy", self.iam_client.get_role_policy, RoleName=role_name, PolicyName=policy_name
        )
        return _policy_document(response) if response else None

    def put_role_policy(self, role_name: str, policy_name: str, document: dict[str, Any]) -> None:
        self._translated(
            "put_role_policy",
            self.iam_client.put_role_policy,
            RoleName=role_name,
            PolicyName=policy_name,
            PolicyDocument=_dump_policy(document),
        )

    def delete_role(self, name: str) -> None:
        """Delete a role after removing its inline policies."""
        if self.get_role(name) is None:
            return
        response = self._get_or_none("list_role_policies", self.iam_client.list_role_policies, RoleName=name)
        for policy_name in (response or {}).get("PolicyNames", []):
            self._delete_ignoring_missing(
                "delete_role_policy", self.iam_client.delete_role_policy, RoleName=name, PolicyName=policy_name
            )
        self._delete_ignoring_missing("delete_role", self.iam_client.delete_role, RoleName=name)
        logger.info(f"Deleted IAM role {name} on {self.provider}")


class S3Client(_RateLimitedClient):
    """Minimal S3 client for backends without an IAM API."""

    def __init__(self, s3_client: Any, provider: str, limiter: TokenBucket | None = None) -> None:
        super().__init__(provider, limiter)
        self.client = s3_client

    def list_buckets(self) -> list[str]:
        response = self._translated("list_buckets", self.client.list_buckets)
        return [bucket["Name"] for bucket in response.get("Buckets", [])]


def _dump_policy(document: dict[str, Any]) -> str:
    return json.dumps(document, sort_keys=True)


def _policy_document(response: dict[str, Any]) -> dict[str, Any]:
    """boto3 usually decodes PolicyDocument into a dict; some backends return a string."""
    document = response.get("PolicyDocument", {})
    if isinstance(document, str):
        try:
            return json.loads(unquote(document))
        except ValueError as e:
            raise CredentialsError(f"Unparseable policy document returned by backend: {e}") from e
    return document
