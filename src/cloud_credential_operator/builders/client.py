"""Builder for cloud backend clients."""

from __future__ import annotations

import hashlib
from typing import Union

import boto3
from botocore.config import Config

from ..constants import PLATFORM_AWS, PLATFORM_S3_COMPATIBLE, PLATFORM_WASABI
from ..models import ClusterSettings, RootCredential
from ..services.aws.client import IAMClient, S3Client
from ..utils.cache import get_cached_object, make_cache_key, set_cached_object
from ..utils.rate_limit import TokenBucket

WASABI_IAM_ENDPOINT = "https://iam.wasabisys.com"
WASABI_S3_ENDPOINT = "https://s3.wasabisys.com"

CloudClient = Union[IAMClient, S3Client]


def _client_config() -> Config:
    return Config(
        signature_version="v4",
        retries={"max_attempts": 2, "mode": "standard"},
        connect_timeout=10,
        read_timeout=30,
    )


def _cache_key(platform: str, cluster: ClusterSettings, root: RootCredential) -> str:
    # Key on a digest so credential material never appears in the cache index.
    digest = hashlib.sha256(
        "|".join(
            [
                root.access_key_id,
                root.secret_access_key,
                cluster.region,
                cluster.endpoint or "",
                cluster.iam_endpoint or "",
            ]
        ).encode()
    ).hexdigest()[:16]
    return make_cache_key("CloudClient", platform, digest)


def create_client(
    platform: str,
    cluster: ClusterSettings,
    root: RootCredential,
    limiter: TokenBucket | None = None,
) -> CloudClient:
    """Create (or reuse) a cloud client authenticated with the root credential.

    Args:
        platform: Cloud platform (aws, wasabi, s3compatible)
        cluster: Cluster settings carrying region and endpoints
        root: Root credential to authenticate with
        limiter: Shared token bucket for the platform

    Returns:
        IAMClient for IAM-capable platforms, S3Client otherwise

    Raises:
        ValueError: If the platform is unknown or required endpoints are missing
    """
    key = _cache_key(platform, cluster, root)
    cached = get_cached_object(key)
    if cached is not None:
        return cached

    credentials = {
        "aws_access_key_id": root.access_key_id,
        "aws_secret_access_key": root.secret_access_key,
    }
    config = _client_config()

    built: CloudClient
    if platform == PLATFORM_AWS:
        iam = boto3.client(
            "iam",
            endpoint_url=cluster.iam_endpoint,
            region_name=cluster.region,
            config=config,
            **credentials,
        )
        sts = boto3.client("sts", region_name=cluster.region, config=config, **credentials)
        built = IAMClient(iam, PLATFORM_AWS, limiter=limiter, sts_client=sts)
    elif platform == PLATFORM_WASABI:
        # Wasabi's IAM API is global and only answers on us-east-1.
        iam = boto3.client(
            "iam",
            endpoint_url=cluster.iam_endpoint or WASABI_IAM_ENDPOINT,
            region_name="us-east-1",
            config=config,
            **credentials,
        )
        built = IAMClient(iam, PLATFORM_WASABI, limiter=limiter)
    elif platform == PLATFORM_S3_COMPATIBLE:
        if not cluster.endpoint:
            raise ValueError("CloudCredential spec.endpoint is required for the s3compatible platform")
        s3 = boto3.client(
            "s3",
            endpoint_url=cluster.endpoint,
            region_name=cluster.region,
            config=Config(
                signature_version="s3v4",
                s3={"addressing_style": "path"},
                retries={"max_attempts": 2, "mode": "standard"},
            ),
            **credentials,
        )
        built = S3Client(s3, PLATFORM_S3_COMPATIBLE, limiter=limiter)
    else:
        raise ValueError(f"Unsupported platform: {platform}")

    set_cached_object(key, built)
    return built
