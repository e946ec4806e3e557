"""Coalescing work queue with per-key exclusion, delayed adds and retry backoff."""

from __future__ import annotations

import heapq
import itertools
import logging
import random
import threading
import time
from collections import deque
from typing import Callable

from .. import metrics

logger = logging.getLogger(__name__)


class ExponentialBackoff:
    """Per-key capped exponential backoff with jitter.

    Successive delays for one key never decrease and never exceed ``cap``;
    ``forget`` resets the key after a successful pass.
    """

    def __init__(
        self,
        base: float = 1.0,
        cap: float = 300.0,
        factor: float = 2.0,
        jitter: float = 0.1,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self.base = base
        self.cap = cap
        self.factor = factor
        self.jitter = jitter
        self._rand = rand
        self._failures: dict[str, int] = {}
        self._last: dict[str, float] = {}
        self._lock = threading.Lock()

    def when(self, key: str) -> float:
        """Register a failure for ``key`` and return the delay before its retry."""
        with self._lock:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
            delay = min(self.cap, self.base * self.factor ** min(failures, 64))
            delay = min(self.cap, delay * (1.0 + self.jitter * self._rand()))
            delay = max(delay, self._last.get(key, 0.0))
            self._last[key] = delay
            return delay

    def retries(self, key: str) -> int:
        with self._lock:
            return self._failures.get(key, 0)

    def forget(self, key: str) -> None:
        with self._lock:
            self._failures.pop(key, None)
            self._last.pop(key, None)


class WorkQueue:
    """Queue of record keys shared by the worker pool.

    Adding a key that is already waiting is a no-op. A key being processed is
    never handed to a second worker; if it is added meanwhile it is queued
    again once the first worker calls ``done``.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._cond = threading.Condition()
        self._queue: deque[str] = deque()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._delayed: list[tuple[float, int, str]] = []
        self._ready_at: dict[str, float] = {}
        self._counter = itertools.count()
        self._shutting_down = False
        self._delay_thread: threading.Thread | None = None

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def _update_depth(self) -> None:
        metrics.work_queue_depth.set(len(self._queue))

    def add(self, key: str) -> None:
        """Queue ``key`` for processing, coalescing with an existing entry."""
        with self._cond:
            self._add_locked(key)

    def _add_locked(self, key: str) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._update_depth()
        self._cond.notify_all()

    def add_after(self, key: str, delay: float) -> None:
        """Queue ``key`` once ``delay`` seconds have passed; an earlier pending time wins."""
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutting_down:
                return
            ready_at = self._clock() + delay
            current = self._ready_at.get(key)
            if current is not None and current <= ready_at:
                return
            self._ready_at[key] = ready_at
            heapq.heappush(self._delayed, (ready_at, next(self._counter), key))
            self._ensure_delay_thread()
            self._cond.notify_all()

    def pending_delay(self, key: str) -> float | None:
        """Seconds until a delayed add of ``key`` fires, or None if none is pending."""
        with self._cond:
            ready_at = self._ready_at.get(key)
            return None if ready_at is None else max(0.0, ready_at - self._clock())

    def _ensure_delay_thread(self) -> None:
        if self._delay_thread is None or not self._delay_thread.is_alive():
            self._delay_thread = threading.Thread(target=self._delay_loop, name="workqueue-delay", daemon=True)
            self._delay_thread.start()

    def _delay_loop(self) -> None:
        with self._cond:
            while not self._shutting_down:
                self._promote_ready()
                if self._delayed:
                    timeout = max(0.0, self._delayed[0][0] - self._clock())
                    self._cond.wait(timeout=min(timeout, 1.0))
                else:
                    self._cond.wait(timeout=1.0)

    def _promote_ready(self) -> None:
        now = self._clock()
        while self._delayed and self._delayed[0][0] <= now:
            ready_at, _, key = heapq.heappop(self._delayed)
            if self._ready_at.get(key) != ready_at:
                continue
            del self._ready_at[key]
            self._add_locked(key)

    def get(self, timeout: float | None = None) -> str | None:
        """Take the next key, blocking until one is ready.

        Returns:
            The key, or None if the queue is shutting down or the timeout passed
        """
        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while not self._queue:
                if self._shutting_down:
                    return None
                self._promote_ready()
                if self._queue:
                    break
                if deadline is not None:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        return None
                    self._cond.wait(timeout=min(remaining, 1.0))
                else:
                    self._cond.wait(timeout=1.0)
            key = self._queue.popleft()
            self._processing.add(key)
            self._dirty.discard(key)
            self._update_depth()
            return key

    def done(self, key: str) -> None:
        """Mark ``key`` finished; re-queue it if it was added while processing."""
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty and not self._shutting_down:
                self._queue.append(key)
                self._update_depth()
                self._cond.notify_all()

    def shutdown(self) -> None:
        """Stop handing out keys; workers blocked in ``get`` return None."""
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()
        logger.info("Work queue shutting down")
