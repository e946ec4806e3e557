"""Wasabi actuator: the AWS user flow against Wasabi's IAM-compatible API."""

from __future__ import annotations

import logging

from ..builders.client import WASABI_S3_ENDPOINT
from ..constants import PLATFORM_WASABI, PROVIDER_KIND_WASABI
from ..exceptions import ValidationError
from ..models import ActuatorContext, ClusterSettings, CredentialsRequest, RootCredential
from .aws import AWSActuator

logger = logging.getLogger(__name__)


class WasabiActuator(AWSActuator):
    """Actuator for WasabiProviderSpec records.

    Wasabi has no STS, so there is no TokenExchange and the root credential is
    checked with GetUser on itself.
    """

    kind = PROVIDER_KIND_WASABI
    platform = PLATFORM_WASABI
    supports_mint = True
    supports_token_exchange = False

    access_key_id_field = "access-key-id"
    secret_access_key_field = "secret-access-key"

    def validate_provider_spec(self, request: CredentialsRequest) -> None:
        super().validate_provider_spec(request)
        if request.provider_spec.get("roleNameHint"):
            raise ValidationError("providerSpec.roleNameHint is not supported by Wasabi")

    def validate_root_credential(self, root: RootCredential, cluster: ClusterSettings) -> None:
        user = self.iam(cluster, root).get_current_user()
        logger.debug(f"Root credential authenticated as {user.get('UserName', 'root account')}")

    def secret_fields(self, access_key_id: str, secret_access_key: str, ctx: ActuatorContext) -> dict[str, str]:
        return {
            "access-key-id": access_key_id,
            "secret-access-key": secret_access_key,
            "endpoint": ctx.cluster.endpoint or WASABI_S3_ENDPOINT,
        }
