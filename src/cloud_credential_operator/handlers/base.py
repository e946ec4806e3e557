"""Base handler class with structured logging and metrics shared by the engine."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, TypeVar

from .. import metrics
from ..constants import CONTROLLER_NAME
from ..logging import log_resource_event
from ..utils.errors import sanitize_exception

_T = TypeVar("_T")


class BaseHandler:
    """Base class for components that act on one resource kind."""

    def __init__(self, kind: str):
        """Initialize base handler.

        Args:
            kind: The Kubernetes resource kind (e.g., "CredentialsRequest")
        """
        self.kind = kind
        self.logger = logging.getLogger(self.__class__.__module__)

    def _get_resource_context(self, meta: dict[str, Any]) -> dict[str, Any]:
        """Extract common resource context from metadata.

        Args:
            meta: Kubernetes resource metadata

        Returns:
            Dictionary with resource context fields
        """
        return {
            "name": meta.get("name", "unknown"),
            "namespace": meta.get("namespace", "default"),
            "uid": meta.get("uid", "unknown"),
        }

    def _log(
        self,
        level: int,
        meta: dict[str, Any],
        message: str,
        event: str,
        reason: str,
        **kwargs: Any,
    ) -> None:
        ctx = self._get_resource_context(meta)
        log_resource_event(
            self.logger,
            controller=CONTROLLER_NAME,
            resource_kind=self.kind,
            resource_name=ctx["name"],
            namespace=ctx["namespace"],
            uid=ctx["uid"],
            event=event,
            reason=reason,
            message=message,
            level=level,
            **kwargs,
        )

    def log_info(
        self,
        meta: dict[str, Any],
        message: str,
        event: str = "info",
        reason: str = "Info",
        **kwargs: Any,
    ) -> None:
        """Log an info-level structured log message.

        Args:
            meta: Kubernetes resource metadata
            message: Log message
            event: Event type (default: "info")
            reason: Reason for the event (default: "Info")
            **kwargs: Additional fields to include in the log
        """
        self._log(logging.INFO, meta, message, event, reason, **kwargs)

    def log_warning(
        self,
        meta: dict[str, Any],
        message: str,
        event: str = "warning",
        reason: str = "Warning",
        **kwargs: Any,
    ) -> None:
        """Log a warning-level structured log message."""
        self._log(logging.WARNING, meta, message, event, reason, **kwargs)

    def log_error(
        self,
        meta: dict[str, Any],
        message: str,
        error: Exception | None = None,
        event: str = "error",
        reason: str = "Error",
        **kwargs: Any,
    ) -> None:
        """Log an error-level structured log message.

        Args:
            meta: Kubernetes resource metadata
            message: Log message
            error: Optional exception to include sanitized error details
            event: Event type (default: "error")
            reason: Reason for the event (default: "Error")
            **kwargs: Additional fields to include in the log
        """
        log_data = kwargs.copy()

        if error is not None:
            log_data["error"] = sanitize_exception(error)
            log_data["error_type"] = type(error).__name__

        self._log(logging.ERROR, meta, message, event, reason, **log_data)

    def reconcile_with_metrics(self, reconcile_fn: Callable[[], _T]) -> _T:
        """Execute one reconciliation, recording its duration and result.

        Args:
            reconcile_fn: Function performing the pass

        Returns:
            Whatever ``reconcile_fn`` returns
        """
        metrics.reconcile_total.labels(kind=self.kind, result="started").inc()

        start_time = time.time()
        try:
            result = reconcile_fn()
            metrics.reconcile_total.labels(kind=self.kind, result="completed").inc()
            return result
        except Exception as e:
            metrics.error_total.labels(kind=self.kind, error_type=type(e).__name__).inc()
            metrics.reconcile_total.labels(kind=self.kind, result="error").inc()
            raise
        finally:
            duration = time.time() - start_time
            metrics.reconcile_duration_seconds.labels(kind=self.kind).observe(duration)
