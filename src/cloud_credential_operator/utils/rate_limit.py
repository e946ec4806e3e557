"""Rate limiting utilities for API calls."""

from __future__ import annotations

import threading
import time
from typing import Callable

from .. import metrics
from ..config import OperatorConfig, RateLimitConfig
from ..exceptions import TransientCloudError


class TokenBucket:
    """Thread-safe token bucket shared by all workers calling one API.

    Callers block until a token is available or the timeout passes.
    """

    def __init__(
        self,
        name: str,
        rate: float,
        burst: int,
        timeout: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        if burst < 1:
            raise ValueError("burst must be at least 1")
        self.name = name
        self.rate = rate
        self.burst = burst
        self.timeout = timeout
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(burst)
        self._updated = clock()
        self._lock = threading.Lock()

    def _refill(self, now: float) -> None:
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
        self._updated = now

    def try_acquire(self) -> float:
        """Take a token if one is available.

        Returns:
            0.0 if a token was taken, otherwise seconds until one is available
        """
        with self._lock:
            self._refill(self._clock())
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return 0.0
            return (1.0 - self._tokens) / self.rate

    def acquire(self, timeout: float | None = None) -> None:
        """Block until a token is available.

        Raises:
            TransientCloudError: If no token became available within the timeout
        """
        limit = self.timeout if timeout is None else timeout
        deadline = self._clock() + limit
        waited = False
        while True:
            wait = self.try_acquire()
            if wait == 0.0:
                if waited:
                    metrics.rate_limit_hits_total.labels(api_type=self.name, result="delayed").inc()
                return
            remaining = deadline - self._clock()
            if wait > remaining:
                metrics.rate_limit_hits_total.labels(api_type=self.name, result="timeout").inc()
                raise TransientCloudError(
                    f"Client-side rate limit for {self.name} exhausted; no capacity within {limit:.1f}s"
                )
            waited = True
            self._sleep(wait)


class RateLimiterRegistry:
    """One token bucket per provider platform plus one for the Kubernetes API."""

    def __init__(
        self,
        cloud_limits: dict[str, RateLimitConfig],
        k8s_limit: RateLimitConfig,
        timeout: float = 10.0,
    ) -> None:
        self._timeout = timeout
        self._default = RateLimitConfig(5.0, 10)
        self._limits = dict(cloud_limits)
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = threading.Lock()
        self.k8s = TokenBucket("k8s", k8s_limit.per_second, k8s_limit.burst, timeout)

    @classmethod
    def from_config(cls, config: OperatorConfig) -> RateLimiterRegistry:
        return cls(config.cloud_rate_limits, config.k8s_rate_limit, config.rate_limit_timeout)

    def for_provider(self, platform: str) -> TokenBucket:
        """Get the shared bucket for a provider platform, creating it on first use."""
        with self._lock:
            bucket = self._buckets.get(platform)
            if bucket is None:
                limit = self._limits.get(platform, self._default)
                bucket = TokenBucket(platform, limit.per_second, limit.burst, self._timeout)
                self._buckets[platform] = bucket
            return bucket
