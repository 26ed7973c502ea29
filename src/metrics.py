"""Prometheus metrics for the cluster reconciler."""

from prometheus_client import Counter, Histogram, Gauge, Info

# Reconciliation metrics
RECONCILE_TOTAL = Counter(
    "cluster_reconciler_reconcile_total",
    "Total number of reconciliations",
    ["resource", "operation", "status"],
)

RECONCILE_DURATION = Histogram(
    "cluster_reconciler_reconcile_duration_seconds",
    "Time spent in reconciliation",
    ["resource", "operation"],
    buckets=(0.1, 0.5, 1.0, 5.0, 30.0, 60.0, 300.0, 900.0, 1800.0, 3600.0),
)

RECONCILE_IN_PROGRESS = Gauge(
    "cluster_reconciler_reconcile_in_progress",
    "Number of reconciliations currently in progress",
    ["resource"],
)

DRIFT_DETECTED = Counter(
    "cluster_reconciler_drift_detected_total",
    "Number of managed resources found deleted out-of-band",
    ["resource"],
)

# Remote operation metrics
OPERATION_POLLS = Counter(
    "cluster_reconciler_operation_polls_total",
    "Total number of remote operation status polls",
    ["action", "status"],
)

OPERATION_WAIT_SECONDS = Histogram(
    "cluster_reconciler_operation_wait_seconds",
    "Time spent waiting for remote operations to finish",
    ["action"],
    buckets=(1.0, 10.0, 60.0, 300.0, 600.0, 1800.0, 3600.0, 5400.0),
)

# OpenStack API metrics
OPENSTACK_API_CALLS = Counter(
    "cluster_reconciler_openstack_api_calls_total",
    "Total number of OpenStack API calls",
    ["service", "operation", "status"],
)

OPENSTACK_API_DURATION = Histogram(
    "cluster_reconciler_openstack_api_duration_seconds",
    "Time spent in OpenStack API calls",
    ["service", "operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

OPENSTACK_API_RETRIES = Counter(
    "cluster_reconciler_openstack_api_retries_total",
    "Total number of OpenStack API call retries",
    ["service", "operation"],
)

RATE_LIMIT_WAIT_SECONDS = Histogram(
    "cluster_reconciler_rate_limit_wait_seconds",
    "Time spent waiting for rate limit slot",
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

# Resource state metrics
MANAGED_RESOURCES = Gauge(
    "cluster_reconciler_managed_resources",
    "Number of resources recorded in the state store",
    ["resource"],
)

# Operator info
OPERATOR_INFO = Info(
    "cluster_reconciler",
    "Information about the cluster reconciler",
)


def set_operator_info(version: str, cloud: str) -> None:
    """Set operator info labels."""
    OPERATOR_INFO.info({"version": version, "cloud": cloud})


def init_metrics(resources: list[str]) -> None:
    """Initialize all metrics with zero values.

    Prometheus metrics with labels don't appear until used.
    This ensures all metrics are visible immediately at startup.
    """
    operations = ["create", "update", "delete", "import", "read"]
    statuses = ["success", "error", "permanent_error"]

    for resource in resources:
        RECONCILE_IN_PROGRESS.labels(resource=resource).set(0)
        DRIFT_DETECTED.labels(resource=resource)
        for operation in operations:
            RECONCILE_DURATION.labels(resource=resource, operation=operation)
            for status in statuses:
                RECONCILE_TOTAL.labels(
                    resource=resource, operation=operation, status=status
                )

    for action in ["create", "update", "delete"]:
        OPERATION_WAIT_SECONDS.labels(action=action)
