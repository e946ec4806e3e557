"""Provider actuators."""

from __future__ import annotations

from ..utils.rate_limit import RateLimiterRegistry
from .aws import AWSActuator
from .base import Actuator, ActuatorRegistry, derive_name
from .s3compatible import S3CompatibleActuator
from .wasabi import WasabiActuator


def default_registry(limiters: RateLimiterRegistry | None = None) -> ActuatorRegistry:
    """Registry holding every built-in provider actuator."""
    return ActuatorRegistry(
        [
            AWSActuator(limiters),
            WasabiActuator(limiters),
            S3CompatibleActuator(limiters),
        ]
    )


__all__ = [
    "AWSActuator",
    "Actuator",
    "ActuatorRegistry",
    "S3CompatibleActuator",
    "WasabiActuator",
    "default_registry",
    "derive_name",
]
