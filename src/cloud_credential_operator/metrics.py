"""Prometheus metrics for the Cloud Credential Operator."""

from prometheus_client import Counter, Gauge, Histogram

# Reconciliation metrics
reconcile_total = Counter(
    "cloud_credential_operator_reconcile_total",
    "Total number of reconciliations",
    ["kind", "result"],
)

reconcile_duration_seconds = Histogram(
    "cloud_credential_operator_reconcile_duration_seconds",
    "Duration of reconciliations in seconds",
    ["kind"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

error_total = Counter(
    "cloud_credential_operator_error_total",
    "Total number of reconciliation errors",
    ["kind", "error_type"],
)

resource_status_total = Counter(
    "cloud_credential_operator_resource_status_total",
    "Resource status transitions recorded by the reconciler",
    ["kind", "status"],
)

# Cloud API metrics
cloud_api_call_total = Counter(
    "cloud_credential_operator_cloud_api_call_total",
    "Total number of cloud API calls",
    ["provider", "operation", "result"],
)

cloud_api_call_duration_seconds = Histogram(
    "cloud_credential_operator_cloud_api_call_duration_seconds",
    "Duration of cloud API calls in seconds",
    ["provider", "operation"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0],
)

rate_limit_hits_total = Counter(
    "cloud_credential_operator_rate_limit_hits_total",
    "Total number of rate limit waits and timeouts",
    ["api_type", "result"],
)

# Secret synchronization metrics
secret_sync_total = Counter(
    "cloud_credential_operator_secret_sync_total",
    "Total number of target secret synchronizations",
    ["result"],
)

drift_detected_total = Counter(
    "cloud_credential_operator_drift_detected_total",
    "Total number of drift detections",
    ["kind", "resource_type"],
)

# Mode and queue metrics
credentials_mode = Gauge(
    "cloud_credential_operator_credentials_mode",
    "Currently active credentials mode (1 for the active mode)",
    ["mode"],
)

work_queue_depth = Gauge(
    "cloud_credential_operator_work_queue_depth",
    "Number of keys waiting in the work queue",
)

work_queue_retries_total = Counter(
    "cloud_credential_operator_work_queue_retries_total",
    "Total number of requeues by kind of retry",
    ["kind"],
)
