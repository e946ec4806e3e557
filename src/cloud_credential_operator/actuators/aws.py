"""AWS IAM actuator: users and access keys for Mint, web-identity roles for TokenExchange."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from .. import metrics
from ..constants import (
    DEFAULT_WEB_IDENTITY_TOKEN_FILE,
    PLATFORM_AWS,
    PROVIDER_KIND_AWS,
)
from ..exceptions import ValidationError
from ..models import ActuatorContext, ActuatorResult, ClusterSettings, CredentialsRequest, Mode, RootCredential
from ..services.aws.client import IAMClient
from ..utils.secrets import content_hash
from .base import Actuator, derive_name, validate_name_hint

logger = logging.getLogger(__name__)

POLICY_VERSION = "2012-10-17"
# IAM allows at most two access keys per user.
MAX_ACCESS_KEYS = 2

_EFFECTS = ("Allow", "Deny")


def build_policy_document(statement_entries: list[dict[str, Any]]) -> dict[str, Any]:
    """Translate providerSpec statementEntries into an IAM policy document."""
    statements = []
    for entry in statement_entries:
        statement: dict[str, Any] = {
            "Effect": entry["effect"],
            "Action": sorted(entry["action"]),
            "Resource": entry.get("resource", "*"),
        }
        if entry.get("policyCondition"):
            statement["Condition"] = entry["policyCondition"]
        statements.append(statement)
    return {"Version": POLICY_VERSION, "Statement": statements}


def _iso(value: Any) -> str:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    return str(value) if value else datetime.now(timezone.utc).isoformat()


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class AWSActuator(Actuator):
    """Actuator for AWSProviderSpec records."""

    kind = PROVIDER_KIND_AWS
    platform = PLATFORM_AWS
    supports_mint = True
    supports_token_exchange = True

    access_key_id_field = "aws_access_key_id"
    secret_access_key_field = "aws_secret_access_key"

    def validate_provider_spec(self, request: CredentialsRequest) -> None:
        spec = request.provider_spec
        entries = spec.get("statementEntries")
        if not isinstance(entries, list) or not entries:
            raise ValidationError("providerSpec.statementEntries must be a non-empty list")
        for idx, entry in enumerate(entries):
            if not isinstance(entry, dict):
                raise ValidationError(f"providerSpec.statementEntries[{idx}] must be an object")
            if entry.get("effect") not in _EFFECTS:
                raise ValidationError(
                    f"providerSpec.statementEntries[{idx}].effect must be one of {', '.join(_EFFECTS)}, "
                    f"got '{entry.get('effect')}'"
                )
            actions = entry.get("action")
            if not isinstance(actions, list) or not actions:
                raise ValidationError(f"providerSpec.statementEntries[{idx}].action must be a non-empty list")
            for action in actions:
                if not isinstance(action, str) or (action != "*" and ":" not in action):
                    raise ValidationError(
                        f"providerSpec.statementEntries[{idx}].action '{action}' must look like 'service:Action'"
                    )
            resource = entry.get("resource", "*")
            if not isinstance(resource, (str, list)) or not resource:
                raise ValidationError(f"providerSpec.statementEntries[{idx}].resource must be a string or list")
            condition = entry.get("policyCondition")
            if condition is not None and not isinstance(condition, dict):
                raise ValidationError(f"providerSpec.statementEntries[{idx}].policyCondition must be an object")
        validate_name_hint(spec, "userNameHint")
        validate_name_hint(spec, "roleNameHint")
        max_age = spec.get("keyMaxAgeDays")
        if max_age is not None and (isinstance(max_age, bool) or not isinstance(max_age, int) or max_age < 1):
            raise ValidationError(f"providerSpec.keyMaxAgeDays must be a positive integer, got '{max_age}'")

    def validate_root_credential(self, root: RootCredential, cluster: ClusterSettings) -> None:
        client = self.client(cluster, root)
        identity = client.get_caller_identity()
        logger.debug(f"Root credential authenticated as account {identity.get('Account', 'unknown')}")

    def iam(self, cluster: ClusterSettings, root: RootCredential | None) -> IAMClient:
        client = self.client(cluster, root)
        if not isinstance(client, IAMClient):
            raise ValidationError(f"{self.platform} client has no IAM API")
        return client

    def user_name(self, request: CredentialsRequest, ctx: ActuatorContext) -> str:
        return request.provider_status.get("user") or derive_name(
            request, ctx.cluster, request.provider_spec.get("userNameHint")
        )

    def role_name(self, request: CredentialsRequest, ctx: ActuatorContext) -> str:
        return request.provider_status.get("role") or derive_name(
            request, ctx.cluster, request.provider_spec.get("roleNameHint")
        )

    def tags(self, request: CredentialsRequest, ctx: ActuatorContext) -> dict[str, str]:
        return {
            "cloud37.dev/credentials-request": str(request.key),
            "cloud37.dev/cluster": ctx.cluster.infrastructure_name,
        }

    def _exists(self, request: CredentialsRequest, ctx: ActuatorContext) -> bool:
        iam = self.iam(ctx.cluster, ctx.root_credential)
        if ctx.mode == Mode.TOKEN_EXCHANGE:
            return iam.get_role(self.role_name(request, ctx)) is not None
        return iam.get_user(self.user_name(request, ctx)) is not None

    def _converge(self, request: CredentialsRequest, ctx: ActuatorContext) -> ActuatorResult:
        if ctx.mode == Mode.TOKEN_EXCHANGE:
            return self._converge_role(request, ctx)
        return self._converge_user(request, ctx)

    # Mint

    def _converge_user(self, request: CredentialsRequest, ctx: ActuatorContext) -> ActuatorResult:
        iam = self.iam(ctx.cluster, ctx.root_credential)
        user_name = self.user_name(request, ctx)
        policy_name = f"{user_name}-policy"

        user = iam.get_user(user_name)
        if user is None:
            user = iam.create_user(user_name, tags=self.tags(request, ctx))

        desired_policy = build_policy_document(request.provider_spec["statementEntries"])
        current_policy = iam.get_user_policy(user_name, policy_name)
        if current_policy != desired_policy:
            if current_policy is not None:
                metrics.drift_detected_total.labels(kind="policy", resource_type="iam_user").inc()
            iam.put_user_policy(user_name, policy_name, desired_policy)
            logger.info(f"Applied inline policy {policy_name} to {user_name}")

        key_id, secret, created_at, rotated = self._ensure_access_key(iam, user_name, request, ctx)

        provider_status: dict[str, Any] = {
            "mode": Mode.MINT.value,
            "user": user_name,
            "userArn": user.get("Arn", ""),
            "policy": policy_name,
            "accessKeyId": key_id,
            "accessKeyCreatedAt": created_at,
        }
        max_age = request.provider_spec.get("keyMaxAgeDays")
        if max_age:
            created = _parse_iso(created_at) or datetime.now(timezone.utc)
            provider_status["credentialsExpireAt"] = (created + timedelta(days=int(max_age))).isoformat()

        return ActuatorResult(
            provider_status=provider_status,
            secret_fields=self.secret_fields(key_id, secret, ctx),
            rotated=rotated,
        )

    def _ensure_access_key(
        self,
        iam: IAMClient,
        user_name: str,
        request: CredentialsRequest,
        ctx: ActuatorContext,
    ) -> tuple[str, str, str, bool]:
        """Reuse the delivered key when it is still valid, otherwise create a new one.

        Keys other than the delivered one are removed only when the delivered key
        is kept, so a freshly created key never replaces one still in use within
        the same pass.

        Returns:
            Tuple of (access key id, secret access key, created-at ISO time, rotated)
        """
        current = ctx.current_fields or {}
        current_id = current.get(self.access_key_id_field, "")
        current_secret = current.get(self.secret_access_key_field, "")
        keys = iam.list_access_keys(user_name)
        by_id = {key["AccessKeyId"]: key for key in keys}

        if (
            current_id in by_id
            and current_secret
            and not ctx.force_rotation
            and self._delivered_intact(current, current_id, current_secret, ctx)
        ):
            for key_id in by_id:
                if key_id != current_id:
                    logger.info(f"Deleting stale access key for {user_name}")
                    iam.delete_access_key(user_name, key_id)
            created_at = request.provider_status.get("accessKeyCreatedAt")
            if request.provider_status.get("accessKeyId") != current_id or not created_at:
                created_at = _iso(by_id[current_id].get("CreateDate"))
            return current_id, current_secret, created_at, False

        if current_id and current_id not in by_id:
            metrics.drift_detected_total.labels(kind="access_key", resource_type="iam_user").inc()
            logger.warning(f"Delivered access key for {user_name} no longer exists; minting a new one")
        elif current_id and not ctx.force_rotation:
            metrics.drift_detected_total.labels(kind="access_key", resource_type="secret").inc()
            logger.warning(f"Delivered key material for {user_name} was altered; minting a new one")

        if len(keys) >= MAX_ACCESS_KEYS:
            unused = [key_id for key_id in by_id if key_id != current_id]
            for key_id in unused[: len(keys) - MAX_ACCESS_KEYS + 1]:
                iam.delete_access_key(user_name, key_id)

        new_key = iam.create_access_key(user_name)
        logger.info(f"Created access key for {user_name}")
        return (
            new_key["AccessKeyId"],
            new_key["SecretAccessKey"],
            _iso(new_key.get("CreateDate")),
            bool(current_id),
        )

    def _delivered_intact(
        self,
        current: dict[str, str],
        key_id: str,
        secret: str,
        ctx: ActuatorContext,
    ) -> bool:
        """Whether the delivered key pair is the one last written.

        Either the secret is untouched, or the key pair alone reproduces the
        recorded hash (only derived fields were edited). A secret key edited in
        place cannot be recovered, since only the backend ever knew it.
        """
        if ctx.recorded_hash is None:
            return True
        if content_hash(current) == ctx.recorded_hash:
            return True
        return content_hash(self.secret_fields(key_id, secret, ctx)) == ctx.recorded_hash

    # TokenExchange

    def trust_policy(self, request: CredentialsRequest, cluster: ClusterSettings) -> dict[str, Any]:
        if not cluster.oidc_provider_arn or not cluster.service_account_issuer:
            raise ValidationError(
                "TokenExchange mode needs CloudCredential spec.oidcProviderArn and spec.serviceAccountIssuer"
            )
        if not request.service_account_names:
            raise ValidationError("spec.serviceAccountNames must list at least one service account in TokenExchange mode")
        issuer = cluster.service_account_issuer.removeprefix("https://").rstrip("/")
        subjects = sorted(
            f"system:serviceaccount:{request.secret_ref.namespace}:{sa}" for sa in request.service_account_names
        )
        return {
            "Version": POLICY_VERSION,
            "Statement": [
                {
                    "Effect": "Allow",
                    "Principal": {"Federated": cluster.oidc_provider_arn},
                    "Action": "sts:AssumeRoleWithWebIdentity",
                    "Condition": {"StringEquals": {f"{issuer}:sub": subjects}},
                }
            ],
        }

    def _converge_role(self, request: CredentialsRequest, ctx: ActuatorContext) -> ActuatorResult:
        trust_policy = self.trust_policy(request, ctx.cluster)
        iam = self.iam(ctx.cluster, ctx.root_credential)
        role_name = self.role_name(request, ctx)
        policy_name = f"{role_name}-policy"

        role = iam.get_role(role_name)
        if role is None:
            role = iam.create_role(role_name, trust_policy, tags=self.tags(request, ctx))
        elif role.get("AssumeRolePolicyDocument") not in (None, trust_policy):
            metrics.drift_detected_total.labels(kind="trust_policy", resource_type="iam_role").inc()
            iam.update_assume_role_policy(role_name, trust_policy)

        desired_policy = build_policy_document(request.provider_spec["statementEntries"])
        if iam.get_role_policy(role_name, policy_name) != desired_policy:
            iam.put_role_policy(role_name, policy_name, desired_policy)
            logger.info(f"Applied inline policy {policy_name} to role {role_name}")

        role_arn = role.get("Arn", "")
        token_file = request.provider_spec.get("webIdentityTokenFile") or DEFAULT_WEB_IDENTITY_TOKEN_FILE
        return ActuatorResult(
            provider_status={"mode": Mode.TOKEN_EXCHANGE.value, "role": role_name, "roleArn": role_arn},
            secret_fields={
                "role_arn": role_arn,
                "web_identity_token_file": token_file,
                "credentials": f"[default]\nrole_arn = {role_arn}\nweb_identity_token_file = {token_file}\n",
            },
        )

    def secret_fields(self, access_key_id: str, secret_access_key: str, ctx: ActuatorContext) -> dict[str, str]:
        return {
            "aws_access_key_id": access_key_id,
            "aws_secret_access_key": secret_access_key,
            "credentials": (
                "[default]\n"
                f"aws_access_key_id = {access_key_id}\n"
                f"aws_secret_access_key = {secret_access_key}\n"
            ),
        }

    def delete(self, request: CredentialsRequest, ctx: ActuatorContext) -> None:
        status = request.provider_status
        recorded_mode = status.get("mode")
        if recorded_mode == Mode.PASSTHROUGH.value:
            return
        if not recorded_mode and ctx.mode not in (Mode.MINT, Mode.TOKEN_EXCHANGE):
            return
        iam = self.iam(ctx.cluster, ctx.root_credential)
        if status.get("role") or (not recorded_mode and ctx.mode == Mode.TOKEN_EXCHANGE):
            iam.delete_role(self.role_name(request, ctx))
        else:
            iam.delete_user(self.user_name(request, ctx))
