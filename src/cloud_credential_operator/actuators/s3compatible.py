"""Actuator for generic S3-compatible storage without an IAM API."""

from __future__ import annotations

import logging

from ..constants import PLATFORM_S3_COMPATIBLE, PROVIDER_KIND_S3_COMPATIBLE
from ..exceptions import ValidationError
from ..models import ActuatorContext, ClusterSettings, CredentialsRequest, RootCredential
from ..services.aws.client import S3Client
from .base import Actuator

logger = logging.getLogger(__name__)


class S3CompatibleActuator(Actuator):
    """Passthrough-only actuator: the root credential is the only principal there is."""

    kind = PROVIDER_KIND_S3_COMPATIBLE
    platform = PLATFORM_S3_COMPATIBLE

    def validate_root_credential(self, root: RootCredential, cluster: ClusterSettings) -> None:
        client = self.client(cluster, root)
        if not isinstance(client, S3Client):
            raise ValidationError(f"{self.platform} client has no S3 API")
        buckets = client.list_buckets()
        logger.debug(f"Root credential can see {len(buckets)} buckets")

    def secret_fields(self, access_key_id: str, secret_access_key: str, ctx: ActuatorContext) -> dict[str, str]:
        return {
            self.access_key_id_field: access_key_id,
            self.secret_access_key_field: secret_access_key,
            "endpoint": ctx.cluster.endpoint or "",
            "region": ctx.cluster.region,
        }

    def delete(self, request: CredentialsRequest, ctx: ActuatorContext) -> None:
        # Nothing was created cloud-side.
        return None
