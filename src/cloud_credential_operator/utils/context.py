"""Per-pass logging context carried across a reconcile pass."""

from __future__ import annotations

import contextvars
import uuid
from contextlib import contextmanager
from typing import Any, Iterator

_pass_context: contextvars.ContextVar[dict[str, str] | None] = contextvars.ContextVar("reconcile_pass", default=None)


def new_correlation_id() -> str:
    """Generate a short correlation ID for one reconcile pass."""
    return uuid.uuid4().hex[:16]


@contextmanager
def reconcile_context(request: str, correlation_id: str | None = None) -> Iterator[str]:
    """Tag every log line emitted inside the block with the pass identity.

    Args:
        request: ``namespace/name`` of the record being reconciled
        correlation_id: Reuse an existing ID instead of generating one

    Yields:
        The correlation ID of the pass
    """
    corr_id = correlation_id or new_correlation_id()
    token = _pass_context.set({"correlation_id": corr_id, "request": request})
    try:
        yield corr_id
    finally:
        _pass_context.reset(token)


def get_correlation_id() -> str | None:
    ctx = _pass_context.get()
    return ctx["correlation_id"] if ctx else None


def get_context_dict(additional: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return the current pass identity merged with ``additional``."""
    ctx: dict[str, Any] = dict(_pass_context.get() or {})
    if additional:
        ctx.update(additional)
    return ctx
