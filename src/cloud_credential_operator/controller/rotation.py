"""Re-check scheduling for provisioned credential requests."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from ..models import CredentialsRequest


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class RotationScheduler:
    """Decide how long to wait before the next pass over a healthy record.

    Args:
        baseline: Periodic re-check interval in seconds
        safety_margin: Rotate this many seconds before known credential expiry
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        baseline: float = 3600.0,
        safety_margin: float = 86400.0,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.baseline = baseline
        self.safety_margin = safety_margin
        self._clock = clock

    def generation_advanced(self, request: CredentialsRequest) -> bool:
        last = request.last_sync_generation
        return last is None or request.generation > last

    def force_requested(self, request: CredentialsRequest) -> bool:
        return request.force_rotation_requested

    def credentials_expire_at(self, request: CredentialsRequest) -> datetime | None:
        return _parse_time(request.provider_status.get("credentialsExpireAt"))

    def _margin(self, request: CredentialsRequest, expires_at: datetime) -> float:
        # Never more than half the credential's lifetime, otherwise every fresh key would already be due.
        issued_at = _parse_time(request.provider_status.get("accessKeyCreatedAt"))
        if issued_at is None:
            return self.safety_margin
        lifetime = (expires_at - issued_at).total_seconds()
        return min(self.safety_margin, max(lifetime / 2, 0.0))

    def seconds_until_rotation(self, request: CredentialsRequest) -> float | None:
        """Seconds until the credential enters its safety margin, or None if it never expires."""
        expires_at = self.credentials_expire_at(request)
        if expires_at is None:
            return None
        remaining = (expires_at - self._clock()).total_seconds() - self._margin(request, expires_at)
        return max(remaining, 0.0)

    def credentials_expiring(self, request: CredentialsRequest) -> bool:
        remaining = self.seconds_until_rotation(request)
        return remaining is not None and remaining <= 0

    def next_check_after(self, request: CredentialsRequest) -> float:
        """Delay in seconds before the next pass, computed from the record as last written."""
        if self.generation_advanced(request) or self.force_requested(request):
            return 0.0
        remaining = self.seconds_until_rotation(request)
        if remaining is None:
            return self.baseline
        return min(self.baseline, remaining)
