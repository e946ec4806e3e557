"""Utilities for managing Kubernetes secrets."""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
from typing import Any

from kubernetes import client


def decode_secret_data(data: dict[str, Any] | None) -> dict[str, str]:
    """Decode the base64 data map of a V1Secret.

    Args:
        data: Raw secret data as returned by the API

    Returns:
        Dictionary of decoded values
    """
    result = {}
    for key, value in (data or {}).items():
        if isinstance(value, bytes):
            result[key] = value.decode("utf-8")
            continue
        try:
            result[key] = base64.b64decode(value, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            # Already decoded by the client
            result[key] = value
    return result


def encode_secret_data(data: dict[str, str]) -> dict[str, str]:
    """Base64 encode a string map for a V1Secret data field."""
    return {k: base64.b64encode(v.encode("utf-8")).decode("utf-8") for k, v in data.items()}


def content_hash(fields: dict[str, str]) -> str:
    """Stable sha256 over canonical JSON of secret fields."""
    canonical = json.dumps(fields, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def build_secret(
    namespace: str,
    secret_name: str,
    data: dict[str, str],
    annotations: dict[str, str] | None = None,
    labels: dict[str, str] | None = None,
    resource_version: str | None = None,
) -> client.V1Secret:
    """Build an Opaque V1Secret body.

    Args:
        namespace: Namespace for the secret
        secret_name: Name of the secret
        data: Secret data (will be base64 encoded)
        annotations: Annotations to attach
        labels: Labels to attach
        resource_version: Expected resourceVersion for optimistic replacement
    """
    return client.V1Secret(
        metadata=client.V1ObjectMeta(
            name=secret_name,
            namespace=namespace,
            annotations=annotations or {},
            labels=labels or {},
            resource_version=resource_version,
        ),
        type="Opaque",
        data=encode_secret_data(data),
    )
