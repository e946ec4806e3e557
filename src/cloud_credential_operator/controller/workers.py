"""Bounded pool of worker threads draining the work queue."""

from __future__ import annotations

import contextvars
import logging
import threading

from .. import metrics
from ..constants import REASON_INTERNAL_ERROR
from ..models import ObjectKey
from .queue import ExponentialBackoff, WorkQueue
from .reconciler import Outcome, OutcomeKind, Reconciler

logger = logging.getLogger(__name__)


class WorkerPool:
    """Runs reconcile passes on ``worker_count`` threads.

    Each worker takes one key, runs the pass to completion and schedules the
    key again according to the outcome. Worker threads run in a copy of the
    starting context so kopf's event posting keeps working from them.
    """

    def __init__(
        self,
        queue: WorkQueue,
        reconciler: Reconciler,
        backoff: ExponentialBackoff,
        worker_count: int = 4,
        stop_event: threading.Event | None = None,
    ) -> None:
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        self.queue = queue
        self.reconciler = reconciler
        self.backoff = backoff
        self.worker_count = worker_count
        self.stop_event = stop_event or reconciler.stop_event
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        if self._threads:
            return
        for idx in range(self.worker_count):
            context = contextvars.copy_context()
            thread = threading.Thread(
                target=context.run,
                args=(self._run,),
                name=f"reconcile-worker-{idx}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
        logger.info(f"Started {self.worker_count} reconcile workers")

    def _run(self) -> None:
        while not self.stop_event.is_set():
            key = self.queue.get()
            if key is None:
                return
            try:
                self.process(key)
            finally:
                self.queue.done(key)

    def process(self, key: str) -> Outcome:
        """Run one pass for ``key`` and schedule its next one."""
        try:
            outcome = self.reconciler.reconcile(ObjectKey.parse(key))
        except Exception:
            logger.exception(f"Reconcile pass for {key} raised")
            outcome = Outcome(OutcomeKind.TRANSIENT, reason=REASON_INTERNAL_ERROR)
        self.schedule(key, outcome)
        return outcome

    def schedule(self, key: str, outcome: Outcome) -> None:
        if outcome.kind in (OutcomeKind.SUCCESS, OutcomeKind.PERMANENT):
            self.backoff.forget(key)
            self.queue.add_after(key, outcome.requeue_after or 0.0)
        elif outcome.kind == OutcomeKind.TRANSIENT:
            delay = self.backoff.when(key)
            metrics.work_queue_retries_total.labels(kind="backoff").inc()
            logger.debug(f"Retrying {key} in {delay:.1f}s ({outcome.reason})")
            self.queue.add_after(key, delay)
        elif outcome.kind == OutcomeKind.STORE_CONFLICT:
            metrics.work_queue_retries_total.labels(kind="conflict").inc()
            self.queue.add(key)
        elif outcome.kind == OutcomeKind.GONE:
            self.backoff.forget(key)

    def stop(self, timeout: float = 30.0) -> None:
        """Signal workers to stop; passes in flight finish their current step."""
        self.stop_event.set()
        self.queue.shutdown()
        for thread in self._threads:
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(f"Worker {thread.name} did not stop within {timeout}s")
        self._threads = []
