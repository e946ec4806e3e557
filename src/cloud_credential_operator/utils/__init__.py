"""Utility functions for the Cloud Credential Operator."""

from .cache import (
    get_cached_object,
    invalidate_cache,
    make_cache_key,
    set_cache_ttl,
    set_cached_object,
)
from .conditions import (
    clear_degraded_condition,
    get_condition,
    is_condition_true,
    set_degraded_condition,
    set_provisioned_condition,
    set_ready_condition,
    update_condition,
)
from .context import get_context_dict, get_correlation_id, new_correlation_id, reconcile_context
from .events import emit_event
from .rate_limit import RateLimiterRegistry, TokenBucket
from .secrets import content_hash, decode_secret_data, encode_secret_data

__all__ = [
    "update_condition",
    "get_condition",
    "is_condition_true",
    "set_ready_condition",
    "set_provisioned_condition",
    "set_degraded_condition",
    "clear_degraded_condition",
    "emit_event",
    "content_hash",
    "decode_secret_data",
    "encode_secret_data",
    "get_cached_object",
    "set_cached_object",
    "set_cache_ttl",
    "invalidate_cache",
    "make_cache_key",
    "TokenBucket",
    "RateLimiterRegistry",
    "get_correlation_id",
    "new_correlation_id",
    "reconcile_context",
    "get_context_dict",
]
