"""Process configuration for the Cloud Credential Operator."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping

from .constants import PLATFORM_AWS, PLATFORM_S3_COMPATIBLE, PLATFORM_WASABI
from .models import Mode

PLATFORMS = (PLATFORM_AWS, PLATFORM_WASABI, PLATFORM_S3_COMPATIBLE)


@dataclass(frozen=True)
class RateLimitConfig:
    """Token bucket parameters for one API."""

    per_second: float
    burst: int


@dataclass(frozen=True)
class OperatorConfig:
    """Recognized process options, read once at startup."""

    mode_override: Mode | None = None
    worker_count: int = 4
    reconcile_interval: float = 3600.0
    mode_cache_ttl: float = 30.0
    k8s_cache_ttl: float = 30.0
    backoff_base: float = 1.0
    backoff_max: float = 300.0
    backoff_jitter: float = 0.1
    rotation_safety_margin: float = 86400.0
    rate_limit_timeout: float = 10.0
    cloud_rate_limits: dict[str, RateLimitConfig] = field(default_factory=dict)
    k8s_rate_limit: RateLimitConfig = field(default_factory=lambda: RateLimitConfig(10.0, 10))
    cluster_config_name: str = "cluster"
    default_platform: str = PLATFORM_AWS
    root_credentials_namespace: str = "kube-system"
    infrastructure_name: str = "cluster"
    metrics_port: int = 8080
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> OperatorConfig:
        """Build configuration from environment variables.

        Raises:
            ValueError: If a value cannot be parsed or is out of range
        """
        env = os.environ if environ is None else environ

        def number(name: str, default: float, minimum: float = 0.0) -> float:
            raw = env.get(name)
            if raw is None or raw == "":
                return default
            try:
                value = float(raw)
            except ValueError as e:
                raise ValueError(f"{name} must be a number, got '{raw}'") from e
            if value < minimum:
                raise ValueError(f"{name} must be >= {minimum}, got {value}")
            return value

        default_rate = number("CLOUD_RATE_LIMIT_PER_SECOND", 5.0, minimum=0.001)
        default_burst = int(number("CLOUD_RATE_LIMIT_BURST", 10, minimum=1))
        cloud_rate_limits = {
            platform: RateLimitConfig(
                per_second=number(f"{platform.upper()}_RATE_LIMIT_PER_SECOND", default_rate, minimum=0.001),
                burst=int(number(f"{platform.upper()}_RATE_LIMIT_BURST", default_burst, minimum=1)),
            )
            for platform in PLATFORMS
        }

        default_platform = env.get("CLOUD_PLATFORM", PLATFORM_AWS).lower()
        if default_platform not in PLATFORMS:
            raise ValueError(f"CLOUD_PLATFORM must be one of {', '.join(PLATFORMS)}, got '{default_platform}'")

        backoff_base = number("BACKOFF_BASE_SECONDS", 1.0, minimum=0.001)
        backoff_max = number("BACKOFF_MAX_SECONDS", 300.0, minimum=0.001)
        if backoff_max < backoff_base:
            raise ValueError("BACKOFF_MAX_SECONDS must be >= BACKOFF_BASE_SECONDS")

        return cls(
            mode_override=Mode.parse(env.get("CREDENTIALS_MODE")),
            worker_count=int(number("WORKER_COUNT", 4, minimum=1)),
            reconcile_interval=number("RECONCILE_INTERVAL_SECONDS", 3600.0, minimum=1.0),
            mode_cache_ttl=number("MODE_CACHE_TTL_SECONDS", 30.0),
            k8s_cache_ttl=number("K8S_CACHE_TTL_SECONDS", 30.0),
            backoff_base=backoff_base,
            backoff_max=backoff_max,
            backoff_jitter=number("BACKOFF_JITTER", 0.1),
            rotation_safety_margin=number("ROTATION_SAFETY_MARGIN_SECONDS", 86400.0),
            rate_limit_timeout=number("RATE_LIMIT_TIMEOUT_SECONDS", 10.0),
            cloud_rate_limits=cloud_rate_limits,
            k8s_rate_limit=RateLimitConfig(
                per_second=number("K8S_RATE_LIMIT_PER_SECOND", 10.0, minimum=0.001),
                burst=int(number("K8S_RATE_LIMIT_BURST", 10, minimum=1)),
            ),
            cluster_config_name=env.get("CLUSTER_CONFIG_NAME", "cluster"),
            default_platform=default_platform,
            root_credentials_namespace=env.get("ROOT_CREDENTIALS_NAMESPACE", "kube-system"),
            infrastructure_name=env.get("INFRASTRUCTURE_NAME", "cluster"),
            metrics_port=int(number("METRICS_PORT", 8080, minimum=1)),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )

    def cloud_rate_limit(self, platform: str) -> RateLimitConfig:
        return self.cloud_rate_limits.get(platform, RateLimitConfig(5.0, 10))
