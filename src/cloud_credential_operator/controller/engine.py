"""Wiring of stores, mode detector, actuators, reconciler, queue and workers."""

from __future__ import annotations

import logging
import threading

from kubernetes import client

from ..actuators import ActuatorRegistry, default_registry
from ..config import OperatorConfig
from ..constants import DEFAULT_ROOT_SECRET_NAMES
from ..exceptions import CredentialsError
from ..models import ObjectKey
from ..utils.cache import set_cache_ttl
from ..utils.rate_limit import RateLimiterRegistry
from .mode import ModeDetector
from .queue import ExponentialBackoff, WorkQueue
from .reconciler import Reconciler
from .rotation import RotationScheduler
from .secrets import SecretSynchronizer
from .store import ClusterConfigSource, CredentialsRequestStore, RootCredentialSource, SecretStore
from .workers import WorkerPool

logger = logging.getLogger(__name__)


class Engine:
    """The running reconciliation engine; kopf handlers only feed it keys."""

    def __init__(
        self,
        config: OperatorConfig,
        custom_api: client.CustomObjectsApi,
        core_api: client.CoreV1Api,
        actuators: ActuatorRegistry | None = None,
    ) -> None:
        self.config = config
        set_cache_ttl(config.k8s_cache_ttl)
        self.limiters = RateLimiterRegistry.from_config(config)
        self.requests = CredentialsRequestStore(custom_api, self.limiters.k8s)
        self.secrets = SecretStore(core_api, self.limiters.k8s)
        self.cluster_source = ClusterConfigSource(
            custom_api,
            name=config.cluster_config_name,
            default_platform=config.default_platform,
            root_credentials_namespace=config.root_credentials_namespace,
            infrastructure_name=config.infrastructure_name,
            limiter=self.limiters.k8s,
        )
        self.actuators = actuators or default_registry(self.limiters)
        self.mode_detector = ModeDetector(
            self.cluster_source,
            RootCredentialSource(self.secrets),
            self.actuators,
            process_override=config.mode_override,
            ttl=config.mode_cache_ttl,
            insufficient_permissions_ttl=config.reconcile_interval,
        )
        self.scheduler = RotationScheduler(config.reconcile_interval, config.rotation_safety_margin)
        self.stop_event = threading.Event()
        self.reconciler = Reconciler(
            self.requests,
            SecretSynchronizer(self.secrets),
            self.mode_detector,
            self.actuators,
            self.scheduler,
            stop_event=self.stop_event,
        )
        self.queue = WorkQueue()
        self.backoff = ExponentialBackoff(
            base=config.backoff_base,
            cap=config.backoff_max,
            jitter=config.backoff_jitter,
        )
        self.pool = WorkerPool(self.queue, self.reconciler, self.backoff, config.worker_count, self.stop_event)
        self._root_secret_ref: ObjectKey | None = None

    def start(self) -> None:
        self.refresh_root_secret_ref()
        self.pool.start()

    def stop(self) -> None:
        self.pool.stop()

    def ready(self) -> bool:
        return self.pool.running and not self.stop_event.is_set()

    def enqueue(self, key: ObjectKey) -> None:
        self.queue.add(str(key))

    def resync(self) -> int:
        """Drop cached cluster state and queue every record."""
        self.mode_detector.invalidate()
        self.refresh_root_secret_ref()
        requests = self.requests.list()
        for request in requests:
            self.enqueue(request.key)
        logger.info(f"Re-queued {len(requests)} credentials requests after a cluster configuration change")
        return len(requests)

    def enqueue_for_namespace(self, namespace: str) -> int:
        """Queue every record whose target secret lives in ``namespace``."""
        count = 0
        for request in self.requests.list():
            if request.secret_ref.namespace == namespace:
                self.enqueue(request.key)
                count += 1
        return count

    def refresh_root_secret_ref(self) -> ObjectKey | None:
        """Re-read which secret holds the root credential.

        Called from startup and resync, never from the watch filter. When the
        cluster configuration cannot be read the previous reference is kept.
        """
        try:
            self._root_secret_ref = self.cluster_source.get().root_secret_ref
        except (CredentialsError, ValueError, client.exceptions.ApiException) as e:
            logger.warning(f"Could not resolve the root credential secret, keeping {self._root_secret_ref}: {e}")
        return self._root_secret_ref

    def is_root_secret(self, namespace: str, name: str) -> bool:
        """Match a secret against the cached root reference; makes no API calls."""
        ref = self._root_secret_ref
        if ref is None:
            return namespace == self.config.root_credentials_namespace and name in DEFAULT_ROOT_SECRET_NAMES.values()
        return ref == ObjectKey(namespace=namespace, name=name)
