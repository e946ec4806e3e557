"""TTL cache for Kubernetes objects and cloud clients."""

from __future__ import annotations

import threading
import time
from typing import Any, Optional

# Cache with TTL support
_cache: dict[str, tuple[Any, float]] = {}
_cache_ttl: float = 30.0
_lock = threading.Lock()


def set_cache_ttl(seconds: float) -> None:
    """Set how long cached objects stay valid; applies to entries already stored."""
    global _cache_ttl
    with _lock:
        _cache_ttl = seconds


def get_cached_object(key: str) -> Optional[Any]:
    """Get an object from cache if it hasn't expired.

    Args:
        key: Cache key (typically "kind:namespace:name")

    Returns:
        Cached object or None if not found or expired
    """
    with _lock:
        if key not in _cache:
            return None

        obj, timestamp = _cache[key]
        if time.time() - timestamp > _cache_ttl:
            # Expired, remove from cache
            del _cache[key]
            return None

        return obj


def set_cached_object(key: str, obj: Any) -> None:
    """Store an object in cache with current timestamp.

    Args:
        key: Cache key (typically "kind:namespace:name")
        obj: Object to cache
    """
    with _lock:
        _cache[key] = (obj, time.time())


def invalidate_cache(pattern: Optional[str] = None) -> None:
    """Invalidate cache entries.

    Args:
        pattern: Optional pattern to match keys (if None, clears all)
    """
    with _lock:
        if pattern is None:
            _cache.clear()
        else:
            keys_to_remove = [key for key in _cache.keys() if pattern in key]
            for key in keys_to_remove:
                del _cache[key]


def make_cache_key(kind: str, namespace: str, name: str) -> str:
    """Create a cache key for a Kubernetes resource.

    Args:
        kind: Resource kind (e.g., "CloudCredential", "Secret")
        namespace: Resource namespace ("" for cluster-scoped resources)
        name: Resource name

    Returns:
        Cache key string
    """
    return f"{kind}:{namespace}:{name}"
