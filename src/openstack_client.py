"""OpenStack SDK wrapper for Magnum clusters with retry logic and rate limiting."""

import logging
import os
import time
from collections.abc import Callable
from functools import wraps
from typing import Any, ParamSpec, TypeVar

import openstack
from openstack.connection import Connection
from openstack.exceptions import HttpException, ResourceNotFound

from metrics import OPENSTACK_API_CALLS, OPENSTACK_API_DURATION, OPENSTACK_API_RETRIES
from models import (
    OperationReport,
    OperationStatus,
    PendingOperation,
    RemoteOperationFailedError,
    RemoteShape,
    ResourceNotFoundError,
    Submission,
    TransientNetworkError,
)
from ratelimit import get_rate_limiter

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

SERVICE = "container_infrastructure_management"

# Cluster attributes returned to the adapter
CLUSTER_FIELDS = (
    "id",
    "name",
    "cluster_template_id",
    "keypair",
    "master_count",
    "node_count",
    "flavor_id",
    "master_flavor_id",
    "labels",
    "create_timeout",
    "discovery_url",
    "status",
    "status_reason",
    "api_address",
    "coe_version",
    "stack_id",
    "project_id",
    "master_addresses",
    "node_addresses",
)

# Fields Magnum can change on a live cluster
UPDATABLE_FIELDS = ("node_count",)


def retry_on_error(
    max_retries: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: tuple[type[Exception], ...] = (HttpException,),
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator to retry operations on transient errors.

    Client errors (4xx) are not transient: they fail immediately with
    RemoteOperationFailedError. Anything still failing after the last
    attempt becomes TransientNetworkError.
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            last_exception: Exception | None = None
            current_delay = delay

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    status_code = getattr(e, "status_code", None)
                    if status_code is not None and 400 <= status_code < 500:
                        raise RemoteOperationFailedError(
                            f"{func.__name__} was rejected: {e}",
                            payload={"status_code": status_code, "details": str(e)},
                        ) from e

                    last_exception = e
                    if attempt < max_retries:
                        OPENSTACK_API_RETRIES.labels(
                            service=SERVICE, operation=func.__name__
                        ).inc()
                        logger.warning(
                            "Attempt %d/%d failed for %s: %s. Retrying in %.1fs...",
                            attempt + 1,
                            max_retries + 1,
                            func.__name__,
                            e,
                            current_delay,
                        )
                        time.sleep(current_delay)
                        current_delay *= backoff
                    else:
                        logger.error(
                            "All %d attempts failed for %s",
                            max_retries + 1,
                            func.__name__,
                        )

            if last_exception is not None:
                raise TransientNetworkError(
                    f"Operation {func.__name__} failed after {max_retries + 1} attempts"
                ) from last_exception
            raise TransientNetworkError(f"Operation {func.__name__} failed unexpectedly")

        return wrapper

    return decorator


def cluster_status(status: str | None) -> OperationStatus:
    """Map a Magnum cluster status (e.g. CREATE_IN_PROGRESS) to an operation status."""
    if not status:
        return OperationStatus.RUNNING
    if status.endswith("_COMPLETE"):
        return OperationStatus.SUCCEEDED
    if status.endswith("_FAILED"):
        return OperationStatus.FAILED
    return OperationStatus.RUNNING


class OpenStackClient:
    """Remote client for Magnum clusters, built on the OpenStack SDK."""

    def __init__(
        self, cloud: str | None = None, clouds_config: str | None = None
    ) -> None:
        """Initialize OpenStack connection.

        Args:
            cloud: Cloud name from clouds.yaml (default: from OS_CLOUD env)
            clouds_config: Path to clouds.yaml (default: OS_CLIENT_CONFIG_FILE env)
        """
        self.cloud_name = cloud or os.environ.get("OS_CLOUD", "openstack")
        if clouds_config:
            os.environ["OS_CLIENT_CONFIG_FILE"] = clouds_config

        self._conn: Connection | None = None

    @property
    def conn(self) -> Connection:
        """Get or create OpenStack connection."""
        if self._conn is None:
            logger.info("Connecting to OpenStack cloud: %s", self.cloud_name)
            self._conn = openstack.connect(cloud=self.cloud_name)
        return self._conn

    def close(self) -> None:
        """Close the OpenStack connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _call(self, operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run one SDK call under the rate limiter, recording metrics."""
        start = time.monotonic()
        status = "success"
        try:
            with get_rate_limiter().acquire():
                return func(*args, **kwargs)
        except ResourceNotFound:
            status = "not_found"
            raise
        except Exception:
            status = "error"
            raise
        finally:
            OPENSTACK_API_CALLS.labels(
                service=SERVICE, operation=operation, status=status
            ).inc()
            OPENSTACK_API_DURATION.labels(service=SERVICE, operation=operation).observe(
                time.monotonic() - start
            )

    @staticmethod
    def _to_remote(cluster: Any) -> RemoteShape:
        return {field: getattr(cluster, field, None) for field in CLUSTER_FIELDS}

    # -------------------------------------------------------------------------
    # Cluster operations
    # -------------------------------------------------------------------------

    @retry_on_error()
    def get(self, remote_id: str) -> RemoteShape | None:
        """Get a cluster by name or UUID."""
        cluster = self._call(
            "find_cluster",
            self.conn.container_infrastructure_management.find_cluster,
            remote_id,
            ignore_missing=True,
        )
        return self._to_remote(cluster) if cluster else None

    @retry_on_error()
    def create(self, remote_id: str, request: RemoteShape) -> Submission:
        """Create the cluster, or update an existing cluster of the same name."""
        coe = self.conn.container_infrastructure_management
        existing = self._call("find_cluster", coe.find_cluster, remote_id, ignore_missing=True)

        if existing is not None:
            updates = {
                field: request[field]
                for field in UPDATABLE_FIELDS
                if field in request and request[field] != getattr(existing, field, None)
            }
            if not updates:
                logger.debug("Cluster %s already matches request", remote_id)
                return Submission(resource=self._to_remote(existing))
            logger.info("Updating cluster %s: %s", existing.id, updates)
            self._call("update_cluster", coe.update_cluster, existing.id, **updates)
            action, cluster_id = "update", existing.id
        else:
            logger.info("Creating cluster: %s", remote_id)
            cluster = self._call("create_cluster", coe.create_cluster, **request)
            action, cluster_id = "create", cluster.id

        return Submission(
            operation=PendingOperation(handle=cluster_id, action=action, remote_id=cluster_id)
        )

    @retry_on_error()
    def delete(self, remote_id: str) -> Submission:
        """Start deleting a cluster."""
        logger.info("Deleting cluster: %s", remote_id)
        try:
            self._call(
                "delete_cluster",
                self.conn.container_infrastructure_management.delete_cluster,
                remote_id,
                ignore_missing=False,
            )
        except ResourceNotFound as e:
            raise ResourceNotFoundError(f"Cluster not found: {remote_id}") from e
        return Submission(
            operation=PendingOperation(handle=remote_id, action="delete", remote_id=remote_id)
        )

    @retry_on_error()
    def poll_status(self, operation: PendingOperation) -> OperationReport:
        """Derive an operation's status from the cluster's status field."""
        try:
            cluster = self._call(
                "get_cluster",
                self.conn.container_infrastructure_management.get_cluster,
                operation.handle,
            )
        except ResourceNotFound:
            if operation.action == "delete":
                return OperationReport(status=OperationStatus.SUCCEEDED)
            return OperationReport(
                status=OperationStatus.FAILED,
                error={"status": "NOT_FOUND", "reason": "cluster disappeared"},
            )

        status = cluster_status(cluster.status)
        if status is OperationStatus.SUCCEEDED:
            # A *_COMPLETE left over from an earlier action is stale
            if not cluster.status.startswith(f"{operation.action.upper()}_"):
                status = OperationStatus.RUNNING

        error = None
        if status is OperationStatus.FAILED:
            error = {"status": cluster.status, "reason": cluster.status_reason}
        return OperationReport(status=status, resource=self._to_remote(cluster), error=error)
