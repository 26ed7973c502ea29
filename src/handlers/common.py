"""Helpers shared by the kopf handlers."""

import copy
import logging
import re
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import kopf

from metrics import RECONCILE_DURATION, RECONCILE_IN_PROGRESS, RECONCILE_TOTAL
from models import (
    AlreadyExistsError,
    ConditionStatus,
    ConfigurationError,
    NaturalKey,
    OperatorError,
    Phase,
    RemoteOperationFailedError,
    ResourceSpec,
    ResourceState,
    StateKey,
    ValidationError,
)
from reconciler import Reconciler
from utils import now_iso, set_condition

logger = logging.getLogger(__name__)

# Retrying these cannot succeed until the custom resource or the remote changes
PERMANENT_ERRORS: tuple[type[Exception], ...] = (
    ValidationError,
    AlreadyExistsError,
    RemoteOperationFailedError,
    ConfigurationError,
)

RETRY_DELAY = 60

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def to_snake(name: str) -> str:
    """Convert a camelCase custom resource key to a schema field name."""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def resource_spec(spec: dict[str, Any]) -> ResourceSpec:
    """Map a custom resource spec to a ResourceSpec.

    Top-level keys are renamed; map values such as labels are passed through
    untouched. importId is an operator instruction, not desired state.
    """
    return {
        to_snake(key): value
        for key, value in spec.items()
        if key != "importId" and value is not None
    }


def status_view(values: ResourceSpec) -> dict[str, Any]:
    return {to_camel(key): value for key, value in values.items()}


def existing_state(
    reconciler: Reconciler, status: dict[str, Any], name: str
) -> ResourceState | None:
    """Find the last-known state of a custom resource.

    The State Store is authoritative; status.remoteId alone is enough to
    rebuild a bare record when the store lost it.
    """
    remote_id = status.get("remoteId")
    if not remote_id:
        return None

    stored = reconciler.store.get(StateKey(reconciler.kind, remote_id))
    if stored is not None:
        return stored

    logger.warning(
        "No stored state for %s %s (%s), continuing from status",
        reconciler.kind,
        name,
        remote_id,
    )
    return ResourceState(
        kind=reconciler.kind,
        natural_key=NaturalKey.from_dict(status.get("naturalKey") or {"name": name}),
        remote_id=remote_id,
    )


def carry_conditions(patch: kopf.Patch, status: dict[str, Any]) -> None:
    """Start the patch from the current conditions.

    A merge patch replaces the conditions list whole, so conditions this
    handler does not touch must be written back with it.
    """
    if "conditions" not in patch.status:
        patch.status["conditions"] = copy.deepcopy(status.get("conditions") or [])


def record_present(
    patch: kopf.Patch, reconciler: Reconciler, state: ResourceState, reason: str
) -> None:
    """Write a Present state into the custom resource status."""
    patch.status["phase"] = Phase.PRESENT.value
    patch.status["remoteId"] = state.remote_id
    patch.status["naturalKey"] = state.natural_key.to_dict()
    patch.status["observed"] = status_view(
        reconciler.adapter.schema.computed_values(state.attributes)
    )
    patch.status["lastSyncTime"] = now_iso()
    set_condition(patch.status, "Ready", ConditionStatus.TRUE.value, reason, "")


def record_absent(patch: kopf.Patch, reason: str, message: str = "") -> None:
    patch.status["phase"] = Phase.ABSENT.value
    patch.status["remoteId"] = None
    patch.status["observed"] = None
    set_condition(patch.status, "Ready", ConditionStatus.FALSE.value, reason, message)


@contextmanager
def reconciling(
    resource: str,
    operation: str,
    name: str,
    body: kopf.Body,
    patch: kopf.Patch | None = None,
) -> Iterator[None]:
    """Record reconcile metrics and translate failures for kopf.

    Errors that retrying cannot fix become kopf.PermanentError; anything
    else becomes kopf.TemporaryError so kopf retries the handler.
    """
    start_time = time.monotonic()
    RECONCILE_IN_PROGRESS.labels(resource=resource).inc()
    try:
        yield
        RECONCILE_TOTAL.labels(
            resource=resource, operation=operation, status="success"
        ).inc()
        RECONCILE_DURATION.labels(resource=resource, operation=operation).observe(
            time.monotonic() - start_time
        )
    except kopf.PermanentError:
        RECONCILE_TOTAL.labels(
            resource=resource, operation=operation, status="permanent_error"
        ).inc()
        raise
    except Exception as e:
        message = str(e)[:200]
        permanent = isinstance(e, PERMANENT_ERRORS)
        if isinstance(e, OperatorError):
            logger.error("Failed to %s %s %s: %s", operation, resource, name, e)
        else:
            logger.exception("Failed to %s %s %s", operation, resource, name)

        if patch is not None:
            patch.status["phase"] = Phase.ERROR.value
            set_condition(
                patch.status,
                "Ready",
                ConditionStatus.FALSE.value,
                type(e).__name__,
                message,
            )
        RECONCILE_TOTAL.labels(
            resource=resource,
            operation=operation,
            status="permanent_error" if permanent else "error",
        ).inc()
        kopf.warn(body, reason=f"{operation.title()}Failed", message=message)

        if permanent:
            raise kopf.PermanentError(f"{operation.title()} failed: {e}") from e
        raise kopf.TemporaryError(
            f"{operation.title()} failed: {e}", delay=RETRY_DELAY
        ) from e
    finally:
        RECONCILE_IN_PROGRESS.labels(resource=resource).dec()
