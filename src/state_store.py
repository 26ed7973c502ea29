"""State Store implementations.

The State Store persists the last-known ResourceState of every managed
instance, keyed by (kind, remote ID). Only the Reconciler writes to it, and
only after a remote call sequence has fully completed.
"""

import json
import logging
import threading
from collections.abc import Callable
from typing import Protocol

import kubernetes
from kubernetes.client import ApiException, CoreV1Api, V1ConfigMap, V1ObjectMeta

from metrics import MANAGED_RESOURCES
from models import ResourceState, StateKey

logger = logging.getLogger(__name__)

CONFIGMAP_NAME = "cluster-reconciler-state"
CONFIGMAP_NAMESPACE = "cluster-reconciler"
MAX_CONFLICT_RETRIES = 5


class StateStore(Protocol):
    """Minimal persistence contract used by the Reconciler."""

    def get(self, key: StateKey) -> ResourceState | None:
        ...

    def put(self, key: StateKey, state: ResourceState) -> None:
        ...

    def delete(self, key: StateKey) -> None:
        ...

    def list(self) -> list[tuple[StateKey, ResourceState]]:
        ...


class MemoryStateStore:
    """Process-local State Store."""

    def __init__(self) -> None:
        self._records: dict[StateKey, str] = {}
        self._lock = threading.Lock()

    def get(self, key: StateKey) -> ResourceState | None:
        with self._lock:
            record = self._records.get(key)
        return ResourceState.from_dict(json.loads(record)) if record else None

    def put(self, key: StateKey, state: ResourceState) -> None:
        # Stored serialized so callers can't mutate persisted state in place
        with self._lock:
            self._records[key] = json.dumps(state.to_dict(), sort_keys=True)
            count = sum(1 for k in self._records if k.kind == key.kind)
        MANAGED_RESOURCES.labels(resource=key.kind).set(count)

    def delete(self, key: StateKey) -> None:
        with self._lock:
            self._records.pop(key, None)
            count = sum(1 for k in self._records if k.kind == key.kind)
        MANAGED_RESOURCES.labels(resource=key.kind).set(count)

    def list(self) -> list[tuple[StateKey, ResourceState]]:
        with self._lock:
            items = list(self._records.items())
        return [
            (key, ResourceState.from_dict(json.loads(record))) for key, record in items
        ]

    def __len__(self) -> int:
        return len(self._records)


class ConfigMapStateStore:
    """State Store backed by a Kubernetes ConfigMap.

    All records live in a single ConfigMap with one JSON blob per resource
    kind, each mapping remote IDs to persisted records. This keeps state
    next to the custom resources that drive it and survives operator
    restarts.
    """

    def __init__(self, k8s_api: CoreV1Api | None = None, namespace: str | None = None):
        """Initialize the store.

        Args:
            k8s_api: Kubernetes CoreV1Api client. If None, will be created lazily.
            namespace: Namespace for the ConfigMap. Defaults to CONFIGMAP_NAMESPACE.
        """
        self._k8s_api = k8s_api
        self._namespace = namespace or CONFIGMAP_NAMESPACE
        self._lock = threading.Lock()

    @property
    def k8s_api(self) -> CoreV1Api:
        """Get or create the Kubernetes API client."""
        if self._k8s_api is None:
            kubernetes.config.load_incluster_config()
            self._k8s_api = CoreV1Api()
        return self._k8s_api

    def _read_configmap(self) -> tuple[dict[str, str], str | None]:
        """Get or create the state ConfigMap; return its data and resourceVersion."""
        try:
            cm = self.k8s_api.read_namespaced_config_map(
                CONFIGMAP_NAME, self._namespace
            )
            return cm.data or {}, cm.metadata.resource_version
        except ApiException as e:
            if e.status != 404:
                raise

        logger.info(
            "Creating state ConfigMap: %s/%s",
            self._namespace,
            CONFIGMAP_NAME,
        )
        try:
            cm = self.k8s_api.create_namespaced_config_map(
                self._namespace,
                V1ConfigMap(
                    metadata=V1ObjectMeta(name=CONFIGMAP_NAME),
                    data={},
                ),
            )
        except ApiException as e:
            if e.status != 409:
                raise
            # Another writer created it first
            cm = self.k8s_api.read_namespaced_config_map(
                CONFIGMAP_NAME, self._namespace
            )
            return cm.data or {}, cm.metadata.resource_version
        return {}, cm.metadata.resource_version

    def _get_records(self, kind: str) -> dict[str, dict]:
        data, _ = self._read_configmap()
        return json.loads(data.get(f"{kind}.json", "{}"))

    def _modify(self, kind: str, change: Callable[[dict[str, dict]], bool]) -> None:
        """Apply change to a kind's records and write them back.

        Writes are serialized within the process, and carry the
        resourceVersion they were read at so that a concurrent writer in
        another process causes a conflict and a fresh read instead of a
        lost record.
        """
        with self._lock:
            for attempt in range(1, MAX_CONFLICT_RETRIES + 1):
                data, version = self._read_configmap()
                records = json.loads(data.get(f"{kind}.json", "{}"))
                if not change(records):
                    return
                try:
                    self.k8s_api.patch_namespaced_config_map(
                        CONFIGMAP_NAME,
                        self._namespace,
                        {
                            "metadata": {"resourceVersion": version},
                            "data": {f"{kind}.json": json.dumps(records, sort_keys=True)},
                        },
                    )
                except ApiException as e:
                    if e.status != 409 or attempt == MAX_CONFLICT_RETRIES:
                        raise
                    logger.info(
                        "State ConfigMap changed while writing %s records, retrying (%d/%d)",
                        kind,
                        attempt,
                        MAX_CONFLICT_RETRIES,
                    )
                    continue
                MANAGED_RESOURCES.labels(resource=kind).set(len(records))
                return

    def get(self, key: StateKey) -> ResourceState | None:
        record = self._get_records(key.kind).get(key.remote_id)
        return ResourceState.from_dict(record) if record else None

    def put(self, key: StateKey, state: ResourceState) -> None:
        def change(records: dict[str, dict]) -> bool:
            records[key.remote_id] = state.to_dict()
            return True

        self._modify(key.kind, change)
        logger.debug("Stored %s state for %s (%s)", key.kind, state.natural_key, key.remote_id)

    def delete(self, key: StateKey) -> None:
        def change(records: dict[str, dict]) -> bool:
            return records.pop(key.remote_id, None) is not None

        self._modify(key.kind, change)
        logger.debug("Removed %s state for %s", key.kind, key.remote_id)

    def list(self) -> list[tuple[StateKey, ResourceState]]:
        data, _ = self._read_configmap()
        result = []
        for data_key, blob in sorted(data.items()):
            if not data_key.endswith(".json"):
                continue
            kind = data_key.removesuffix(".json")
            for remote_id, record in json.loads(blob).items():
                result.append((StateKey(kind, remote_id), ResourceState.from_dict(record)))
        return result
