"""Per-record reconciliation: validate, resolve mode, actuate, sync the secret, report status."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .. import metrics
from ..actuators import Actuator, ActuatorRegistry
from ..constants import (
    ANNOTATION_CONTENT_HASH,
    KIND_CREDENTIALS_REQUEST,
    REASON_AUTHORIZATION_FAILED,
    REASON_DELETION_FAILED,
    REASON_INTERNAL_ERROR,
    REASON_MANUAL_ACTION_REQUIRED,
    REASON_MANUALLY_PROVISIONED,
    REASON_NOT_PROVISIONED,
    REASON_PROVIDER_NOT_ACTIVE,
    REASON_PROVISIONED,
)
from ..exceptions import (
    AuthorizationError,
    CredentialsError,
    StoreConflictError,
    TransientCloudError,
    ValidationError,
)
from ..handlers.base import BaseHandler
from ..models import ActuatorContext, ActuatorResult, CredentialsRequest, Mode, ModeDecision, ObjectKey
from ..tracing import add_span_attribute, trace_span
from ..utils.conditions import (
    clear_degraded_condition,
    is_condition_true,
    set_degraded_condition,
    set_provisioned_condition,
    set_ready_condition,
)
from ..utils.context import reconcile_context
from ..utils.errors import sanitize_error_message, sanitize_exception
from ..utils.events import (
    emit_credentials_created,
    emit_credentials_deleted,
    emit_credentials_rotated,
    emit_drift_repaired,
    emit_manual_action_required,
    emit_reconcile_failed,
    emit_reconcile_started,
    emit_secret_synced,
    emit_validate_failed,
)
from .mode import ModeDetector
from .rotation import RotationScheduler
from .secrets import SecretSynchronizer, SyncResult
from .store import CredentialsRequestStore


class OutcomeKind(str, Enum):
    """How the worker pool should schedule the key after a pass."""

    SUCCESS = "success"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    STORE_CONFLICT = "store_conflict"
    GONE = "gone"
    SHUTDOWN = "shutdown"


@dataclass(frozen=True)
class Outcome:
    kind: OutcomeKind
    requeue_after: float | None = None
    reason: str = ""
    message: str = ""


class _ShuttingDown(Exception):
    """Raised between steps once the stop signal is set."""


class Reconciler(BaseHandler):
    """Drives one CredentialsRequest towards its desired state per pass.

    The reconciler is the only writer of CredentialsRequest status and the only
    place errors are classified into conditions and retry cadence.
    """

    def __init__(
        self,
        requests: CredentialsRequestStore,
        synchronizer: SecretSynchronizer,
        mode_detector: ModeDetector,
        actuators: ActuatorRegistry,
        scheduler: RotationScheduler,
        stop_event: threading.Event | None = None,
    ) -> None:
        super().__init__(KIND_CREDENTIALS_REQUEST)
        self.requests = requests
        self.synchronizer = synchronizer
        self.mode_detector = mode_detector
        self.actuators = actuators
        self.scheduler = scheduler
        self.stop_event = stop_event or threading.Event()

    def _check_stop(self) -> None:
        if self.stop_event.is_set():
            raise _ShuttingDown()

    def reconcile(self, key: ObjectKey) -> Outcome:
        """Run one pass for ``key`` against freshly read state."""
        with reconcile_context(str(key)):
            with trace_span(
                "credentialsrequest.reconcile",
                kind=self.kind,
                attributes={"k8s.namespace": key.namespace, "k8s.name": key.name},
            ):
                outcome = self.reconcile_with_metrics(lambda: self._reconcile(key))
                add_span_attribute("reconcile.outcome", outcome.kind.value)
                metrics.reconcile_total.labels(kind=self.kind, result=outcome.kind.value).inc()
                return outcome

    def _reconcile(self, key: ObjectKey) -> Outcome:
        try:
            request = self.requests.get(key)
        except CredentialsError as e:
            return Outcome(OutcomeKind.TRANSIENT, reason=e.reason, message=e.message)
        if request is None:
            return Outcome(OutcomeKind.GONE)
        add_span_attribute("credentials.state", request.state.value)
        if request.deleting:
            return self._finalize(request)
        return self._provision(request)

    # Provisioning

    def _provision(self, request: CredentialsRequest) -> Outcome:
        meta = request.body.get("metadata", {})
        if self.scheduler.generation_advanced(request):
            emit_reconcile_started(request.body)
        decision: ModeDecision | None = None
        try:
            actuator = self._actuator_for(request)
            actuator.validate(request)
            if not request.has_finalizer:
                request = self.requests.add_finalizer(request)

            decision = self.mode_detector.determine_mode()
            add_span_attribute("credentials.mode", decision.mode.value)

            if actuator.platform != decision.cluster.platform:
                return self._not_active(request, decision)
            if decision.mode == Mode.MANUAL:
                return self._manual(request, actuator)

            # Unowned secrets are rejected before anything is created cloud-side.
            existing = self.synchronizer.check_ownership(request.secret_ref, request)
            ctx = ActuatorContext(
                mode=decision.mode,
                cluster=decision.cluster,
                root_credential=decision.root_credential,
                current_fields=existing.data if existing else None,
                recorded_hash=existing.annotations.get(ANNOTATION_CONTENT_HASH) if existing else None,
                force_rotation=self.scheduler.force_requested(request) or self.scheduler.credentials_expiring(request),
            )
            result = self._actuate(actuator, request, ctx)
            sync = self.synchronizer.sync(request.secret_ref, result.secret_fields, request)
        except _ShuttingDown:
            self.log_info(meta, "Stopping before the next cloud call", reason="ShuttingDown")
            return Outcome(OutcomeKind.SHUTDOWN)
        except Exception as e:
            if (
                decision is not None
                and decision.mode == Mode.MINT
                and isinstance(e, AuthorizationError)
                and e.reason == REASON_AUTHORIZATION_FAILED
                and decision.root_credential is not None
            ):
                self.mode_detector.report_insufficient_permissions(decision.root_credential.resource_version)
            return self._fail(request, e)

        try:
            return self._succeed(request, decision, result, sync)
        except Exception as e:
            return self._fail(request, e)

    def _actuator_for(self, request: CredentialsRequest) -> Actuator:
        actuator = self.actuators.for_kind(request.provider_kind)
        if actuator is None:
            raise ValidationError(
                f"Unknown providerSpec.kind '{request.provider_kind}'; "
                f"supported kinds: {', '.join(self.actuators.kinds)}"
            )
        return actuator

    def _actuate(self, actuator: Actuator, request: CredentialsRequest, ctx: ActuatorContext) -> ActuatorResult:
        attributes = {"actuator.kind": actuator.kind, "credentials.mode": ctx.mode.value}
        self._check_stop()
        with trace_span("actuator.exists", attributes=attributes):
            exists = actuator.exists(request, ctx)
        self._check_stop()
        if exists:
            with trace_span("actuator.update", attributes=attributes):
                return actuator.update(request, ctx)
        with trace_span("actuator.create", attributes=attributes):
            return actuator.create(request, ctx)

    def _succeed(
        self,
        request: CredentialsRequest,
        decision: ModeDecision,
        result: ActuatorResult,
        sync: SyncResult,
    ) -> Outcome:
        generation = request.generation
        message = f"Credentials provisioned in {decision.mode.value} mode into secret {request.secret_ref}"
        conditions = request.conditions
        conditions = set_provisioned_condition(conditions, True, REASON_PROVISIONED, message, generation)
        conditions = set_ready_condition(conditions, True, message, generation, reason=REASON_PROVISIONED)
        conditions = clear_degraded_condition(conditions, generation)

        synced = sync.changed or result.created or result.rotated
        status = self._base_status(request, conditions, provisioned=True)
        status.update(
            {
                "lastSyncGeneration": generation,
                "mode": decision.mode.value,
                "providerKind": request.provider_kind,
                "providerStatus": result.provider_status,
            }
        )
        if synced or self.scheduler.generation_advanced(request) or "lastSyncTimestamp" not in status:
            status["lastSyncTimestamp"] = _now()

        request = self._write_status(request, status)
        if self.scheduler.force_requested(request):
            request = self.requests.clear_force_rotation(request)

        meta = request.body.get("metadata", {})
        if result.created:
            emit_credentials_created(request.body, decision.mode.value)
        if result.rotated:
            emit_credentials_rotated(request.body)
        if sync.drift:
            emit_drift_repaired(request.body, str(request.secret_ref))
        if sync.changed:
            emit_secret_synced(request.body, str(request.secret_ref))
            self.log_info(meta, f"Secret {request.secret_ref} written", event="secret_synced", reason=REASON_PROVISIONED)

        metrics.resource_status_total.labels(kind=self.kind, status="ready").inc()
        return Outcome(OutcomeKind.SUCCESS, requeue_after=self.scheduler.next_check_after(request))

    def _not_active(self, request: CredentialsRequest, decision: ModeDecision) -> Outcome:
        message = (
            f"{request.provider_kind} is not served on platform '{decision.cluster.platform}'; "
            "nothing will be provisioned"
        )
        conditions = request.conditions
        conditions = set_ready_condition(conditions, False, message, request.generation, reason=REASON_PROVIDER_NOT_ACTIVE)
        conditions = clear_degraded_condition(conditions, request.generation)
        status = self._base_status(request, conditions, provisioned=bool(request.status.get("provisioned")))
        self._write_status(request, status)
        self.log_info(request.body.get("metadata", {}), message, reason=REASON_PROVIDER_NOT_ACTIVE)
        return Outcome(OutcomeKind.SUCCESS, requeue_after=self.scheduler.baseline, reason=REASON_PROVIDER_NOT_ACTIVE)

    def _manual(self, request: CredentialsRequest, actuator: Actuator) -> Outcome:
        problem = self.synchronizer.verify_manual(request.secret_ref, request, actuator.required_secret_fields)
        generation = request.generation
        conditions = request.conditions
        if problem:
            conditions = set_provisioned_condition(conditions, False, REASON_MANUAL_ACTION_REQUIRED, problem, generation)
            conditions = set_ready_condition(conditions, False, problem, generation, reason=REASON_MANUAL_ACTION_REQUIRED)
            conditions = set_degraded_condition(conditions, REASON_MANUAL_ACTION_REQUIRED, problem, generation)
            self._write_status(request, self._base_status(request, conditions, provisioned=False))
            emit_manual_action_required(request.body, problem)
            self.log_warning(request.body.get("metadata", {}), problem, reason=REASON_MANUAL_ACTION_REQUIRED)
            metrics.resource_status_total.labels(kind=self.kind, status="manual_action_required").inc()
            return Outcome(
                OutcomeKind.PERMANENT,
                requeue_after=self.scheduler.baseline,
                reason=REASON_MANUAL_ACTION_REQUIRED,
                message=problem,
            )

        message = f"Secret {request.secret_ref} was provisioned manually"
        conditions = set_provisioned_condition(conditions, True, REASON_MANUALLY_PROVISIONED, message, generation)
        conditions = set_ready_condition(conditions, True, message, generation, reason=REASON_MANUALLY_PROVISIONED)
        conditions = clear_degraded_condition(conditions, generation)
        status = self._base_status(request, conditions, provisioned=True)
        status.update(
            {"lastSyncGeneration": generation, "mode": Mode.MANUAL.value, "providerKind": request.provider_kind}
        )
        if self.scheduler.generation_advanced(request) or "lastSyncTimestamp" not in status:
            status["lastSyncTimestamp"] = _now()
        request = self._write_status(request, status)
        if self.scheduler.force_requested(request):
            request = self.requests.clear_force_rotation(request)
        metrics.resource_status_total.labels(kind=self.kind, status="ready").inc()
        return Outcome(OutcomeKind.SUCCESS, requeue_after=self.scheduler.next_check_after(request))

    # Failure handling

    def _fail(
        self,
        request: CredentialsRequest,
        error: Exception,
        reason: str | None = None,
        backoff: bool = False,
    ) -> Outcome:
        """Record a failed pass as Degraded and pick the retry cadence.

        Transient causes back off; permanent ones retry at the baseline interval
        unless ``backoff`` is set. Store conflicts retry immediately without a status write.
        """
        meta = request.body.get("metadata", {})
        if isinstance(error, StoreConflictError):
            self.log_info(meta, "Record or secret changed during the pass; retrying", reason=error.reason)
            return Outcome(OutcomeKind.STORE_CONFLICT, reason=error.reason, message=error.message)

        if isinstance(error, CredentialsError):
            transient = error.transient or backoff
            reason = reason or error.reason
            message = error.message
        else:
            transient = True
            reason = reason or REASON_INTERNAL_ERROR
            message = f"Unexpected error: {sanitize_exception(error)}"
            self.logger.exception(f"Unclassified failure reconciling {request.key}")

        message = sanitize_error_message(message)
        metrics.error_total.labels(kind=self.kind, error_type=type(error).__name__).inc()
        self.log_error(meta, message, error=error, reason=reason, transient=transient)
        if isinstance(error, ValidationError):
            emit_validate_failed(request.body, message)
        else:
            emit_reconcile_failed(request.body, message)

        generation = request.generation
        conditions = request.conditions
        if not is_condition_true(conditions, "CredentialsProvisioned"):
            conditions = set_provisioned_condition(conditions, False, REASON_NOT_PROVISIONED, message, generation)
        conditions = set_ready_condition(conditions, False, message, generation, reason=reason)
        conditions = set_degraded_condition(conditions, reason, message, generation)
        status = self._base_status(request, conditions, provisioned=bool(request.status.get("provisioned")))
        try:
            self._write_status(request, status)
        except StoreConflictError as e:
            return Outcome(OutcomeKind.STORE_CONFLICT, reason=e.reason, message=e.message)
        except TransientCloudError as e:
            self.log_error(meta, "Failed to record failure status", error=e, reason=e.reason)
            return Outcome(OutcomeKind.TRANSIENT, reason=reason, message=message)

        metrics.resource_status_total.labels(kind=self.kind, status="degraded").inc()
        if transient:
            return Outcome(OutcomeKind.TRANSIENT, reason=reason, message=message)
        return Outcome(OutcomeKind.PERMANENT, requeue_after=self.scheduler.baseline, reason=reason, message=message)

    # Deletion

    def _finalize(self, request: CredentialsRequest) -> Outcome:
        if not request.has_finalizer:
            return Outcome(OutcomeKind.GONE)
        meta = request.body.get("metadata", {})
        # Teardown follows the kind the record was provisioned as, not the current spec.
        recorded_kind = request.status.get("providerKind")
        kind = recorded_kind or request.provider_kind
        try:
            actuator = self.actuators.for_kind(kind)
            if actuator is None:
                raise ValidationError(
                    f"No actuator for providerSpec.kind '{kind}'; cloud credentials cannot be removed. "
                    f"Restore the kind to one of: {', '.join(self.actuators.kinds)}"
                )
            decision = self.mode_detector.determine_mode()
            if actuator.platform != decision.cluster.platform:
                if recorded_kind:
                    raise ValidationError(
                        f"Record was provisioned as {recorded_kind} on platform '{actuator.platform}' "
                        f"but the active platform is '{decision.cluster.platform}'; cloud credentials cannot be removed"
                    )
                self.log_info(meta, f"{kind} was never provisioned on platform '{decision.cluster.platform}'")
            elif decision.mode != Mode.MANUAL:
                self._check_stop()
                ctx = ActuatorContext(
                    mode=decision.mode,
                    cluster=decision.cluster,
                    root_credential=decision.root_credential,
                )
                with trace_span("actuator.delete", attributes={"actuator.kind": actuator.kind}):
                    actuator.delete(request, ctx)
                self.synchronizer.delete_owned(request.secret_ref, request)
            self.requests.remove_finalizer(request)
        except _ShuttingDown:
            return Outcome(OutcomeKind.SHUTDOWN)
        except Exception as e:
            return self._fail(request, e, reason=REASON_DELETION_FAILED, backoff=True)

        emit_credentials_deleted(request.body)
        self.log_info(meta, "Cloud credentials removed and finalizer released", event="deleted", reason="Deleted")
        metrics.resource_status_total.labels(kind=self.kind, status="deleted").inc()
        return Outcome(OutcomeKind.GONE)

    # Status helpers

    def _base_status(
        self,
        request: CredentialsRequest,
        conditions: list[dict[str, Any]],
        provisioned: bool,
    ) -> dict[str, Any]:
        status = dict(request.status)
        status["conditions"] = conditions
        status["provisioned"] = provisioned
        return status

    def _write_status(self, request: CredentialsRequest, status: dict[str, Any]) -> CredentialsRequest:
        if status == request.status:
            return request
        return self.requests.update_status(request, status)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
