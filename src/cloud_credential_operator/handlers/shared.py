"""Shared state for handlers: the running engine."""

from __future__ import annotations

import threading

from ..controller.engine import Engine

_engine: Engine | None = None
_lock = threading.Lock()


def set_engine(engine: Engine | None) -> None:
    """Install (or clear) the engine that event handlers feed."""
    global _engine
    with _lock:
        _engine = engine


def get_engine() -> Engine | None:
    """Return the running engine, or None before startup and after cleanup."""
    with _lock:
        return _engine
