"""Kopf handlers for the CoeCluster CRD (OpenStack Magnum clusters)."""

import logging
from typing import Any

import kopf

from constants import CRD_GROUP, CRD_VERSION, KIND_COE_CLUSTER
from handlers.common import (
    carry_conditions,
    existing_state,
    reconciling,
    record_absent,
    record_present,
    resource_spec,
)
from metrics import DRIFT_DETECTED
from models import ConditionStatus, ImportRequest, Phase
from state import get_reconciler, state
from utils import set_condition

logger = logging.getLogger(__name__)

RESOURCE = "CoeCluster"
PLURAL = "coeclusters"
DRIFT_CHECK_INTERVAL = 300


def _converge(
    spec: dict[str, Any],
    status: dict[str, Any],
    patch: kopf.Patch,
    name: str,
    reason: str,
) -> None:
    reconciler = get_reconciler(KIND_COE_CLUSTER)
    existing = existing_state(reconciler, status, name)
    result = reconciler.create_or_update(
        resource_spec(spec), existing, cancel=state.stop_event
    )
    record_present(patch, reconciler, result, reason)


def _adopt(spec: dict[str, Any], patch: kopf.Patch, name: str) -> None:
    reconciler = get_reconciler(KIND_COE_CLUSTER)
    adopted = reconciler.import_resource(
        ImportRequest(kind=KIND_COE_CLUSTER, identity=spec["importId"])
    )
    record_present(patch, reconciler, adopted, "Imported")

    # Importing never mutates the cluster; surface what an update would change
    pending = [change.path for change in reconciler.plan(resource_spec(spec), adopted)]
    patch.status["pendingChanges"] = pending
    if pending:
        set_condition(
            patch.status,
            "InSync",
            ConditionStatus.FALSE.value,
            "PendingChanges",
            f"{len(pending)} field(s) differ from the spec",
        )
    else:
        set_condition(
            patch.status, "InSync", ConditionStatus.TRUE.value, "Imported", ""
        )
    logger.info("Imported CoeCluster %s (%d pending changes)", name, len(pending))


@kopf.on.create(CRD_GROUP, CRD_VERSION, PLURAL)
def create_coe_cluster(
    spec: dict[str, Any],
    status: dict[str, Any],
    patch: kopf.Patch,
    name: str,
    meta: dict[str, Any],
    body: kopf.Body,
    **_: Any,
) -> None:
    """Handle CoeCluster creation, or adoption when spec.importId is set."""
    logger.info("Creating CoeCluster: %s", name)
    carry_conditions(patch, status)
    patch.status["phase"] = Phase.CREATING.value
    patch.status["observedGeneration"] = meta.get("generation", 1)

    with reconciling(RESOURCE, "create", name, body, patch):
        if spec.get("importId"):
            _adopt(spec, patch, name)
        else:
            _converge(spec, status, patch, name, "Created")
            patch.status["pendingChanges"] = []
    logger.info("Successfully reconciled CoeCluster: %s", name)


@kopf.on.update(CRD_GROUP, CRD_VERSION, PLURAL, field="spec")
def update_coe_cluster(
    spec: dict[str, Any],
    status: dict[str, Any],
    patch: kopf.Patch,
    name: str,
    meta: dict[str, Any],
    body: kopf.Body,
    **_: Any,
) -> None:
    """Handle CoeCluster spec changes."""
    logger.info("Updating CoeCluster: %s", name)
    carry_conditions(patch, status)
    patch.status["phase"] = Phase.UPDATING.value
    patch.status["observedGeneration"] = meta.get("generation", 1)

    with reconciling(RESOURCE, "update", name, body, patch):
        _converge(spec, status, patch, name, "Updated")
        patch.status["pendingChanges"] = []
        set_condition(
            patch.status, "InSync", ConditionStatus.TRUE.value, "Updated", ""
        )
    logger.info("Successfully updated CoeCluster: %s", name)


@kopf.on.delete(CRD_GROUP, CRD_VERSION, PLURAL)
def delete_coe_cluster(
    status: dict[str, Any],
    name: str,
    body: kopf.Body,
    **_: Any,
) -> None:
    """Handle CoeCluster deletion."""
    logger.info("Deleting CoeCluster: %s", name)

    with reconciling(RESOURCE, "delete", name, body):
        reconciler = get_reconciler(KIND_COE_CLUSTER)
        existing = existing_state(reconciler, status, name)
        if existing is None:
            logger.warning("No remoteId in status for %s, nothing to delete", name)
            return
        reconciler.delete(existing, cancel=state.stop_event)
    logger.info("Successfully deleted CoeCluster: %s", name)


@kopf.timer(CRD_GROUP, CRD_VERSION, PLURAL, interval=DRIFT_CHECK_INTERVAL)
def reconcile_coe_cluster(
    spec: dict[str, Any],
    status: dict[str, Any],
    patch: kopf.Patch,
    name: str,
    body: kopf.Body,
    **_: Any,
) -> None:
    """Periodic refresh to detect clusters deleted out-of-band and recreate them."""
    phase = status.get("phase")

    if phase == Phase.ABSENT.value:
        logger.info("CoeCluster %s is absent remotely, recreating", name)
        carry_conditions(patch, status)
        # Failures leave the phase alone so the next tick retries
        with reconciling(RESOURCE, "create", name, body):
            _converge(spec, {}, patch, name, "Recreated")
        return

    if phase != Phase.PRESENT.value:
        logger.debug("Skipping drift check for %s: phase is %s", name, phase)
        return

    carry_conditions(patch, status)

    with reconciling(RESOURCE, "read", name, body):
        reconciler = get_reconciler(KIND_COE_CLUSTER)
        existing = existing_state(reconciler, status, name)
        if existing is None:
            return
        refreshed = reconciler.read(existing)
        if refreshed is None:
            logger.warning(
                "CoeCluster %s (%s) was deleted out-of-band", name, existing.remote_id
            )
            DRIFT_DETECTED.labels(resource=RESOURCE).inc()
            record_absent(patch, "Drifted", "cluster no longer exists remotely")
            return
        record_present(patch, reconciler, refreshed, "Refreshed")
