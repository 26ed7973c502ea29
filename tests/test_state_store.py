"""Tests for State Store implementations."""

import json
import threading
import time
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from kubernetes.client import ApiException

from models import NaturalKey, ResourceState, StateKey
from state_store import (
    CONFIGMAP_NAME,
    MAX_CONFLICT_RETRIES,
    ConfigMapStateStore,
    MemoryStateStore,
)


def _state(remote_id="5d12f6fd", node_count=2):
    return ResourceState(
        kind="coe_cluster",
        natural_key=NaturalKey("k8s-prod", "openstack"),
        remote_id=remote_id,
        attributes={"name": "k8s-prod", "node_count": node_count},
    )


class TestMemoryStateStore:
    """Tests for MemoryStateStore."""

    def test_put_and_get(self):
        store = MemoryStateStore()
        state = _state()

        store.put(state.key, state)

        assert store.get(state.key) == state
        assert len(store) == 1

    def test_get_returns_copy(self):
        store = MemoryStateStore()
        state = _state()
        store.put(state.key, state)

        store.get(state.key).attributes["node_count"] = 99

        assert store.get(state.key).attributes["node_count"] == 2

    def test_delete_missing_is_noop(self):
        store = MemoryStateStore()
        store.delete(StateKey("coe_cluster", "missing"))
        assert len(store) == 0

    def test_list(self):
        store = MemoryStateStore()
        first, second = _state("a"), _state("b")
        store.put(first.key, first)
        store.put(second.key, second)

        assert sorted(key.remote_id for key, _ in store.list()) == ["a", "b"]


class TestConfigMapStateStore:
    """Tests for ConfigMapStateStore."""

    @pytest.fixture
    def api(self):
        api = MagicMock()
        api.read_namespaced_config_map.return_value.data = {}
        return api

    def test_put_patches_kind_blob(self, api):
        store = ConfigMapStateStore(api, namespace="ops")
        state = _state()

        store.put(state.key, state)

        name, namespace, body = api.patch_namespaced_config_map.call_args.args
        assert (name, namespace) == (CONFIGMAP_NAME, "ops")
        records = json.loads(body["data"]["coe_cluster.json"])
        assert records == {"5d12f6fd": state.to_dict()}

    def test_get_reads_record(self, api):
        state = _state()
        api.read_namespaced_config_map.return_value.data = {
            "coe_cluster.json": json.dumps({"5d12f6fd": state.to_dict()})
        }
        store = ConfigMapStateStore(api)

        assert store.get(state.key) == state
        assert store.get(StateKey("coe_cluster", "other")) is None
        assert store.get(StateKey("openshift_cluster", "5d12f6fd")) is None

    def test_delete_removes_record(self, api):
        state = _state()
        api.read_namespaced_config_map.return_value.data = {
            "coe_cluster.json": json.dumps({"5d12f6fd": state.to_dict(), "x": {}})
        }
        store = ConfigMapStateStore(api)

        store.delete(state.key)

        body = api.patch_namespaced_config_map.call_args.args[2]
        assert list(json.loads(body["data"]["coe_cluster.json"])) == ["x"]

    def test_delete_missing_does_not_write(self, api):
        ConfigMapStateStore(api).delete(StateKey("coe_cluster", "missing"))
        api.patch_namespaced_config_map.assert_not_called()

    def test_creates_configmap_when_missing(self, api):
        api.read_namespaced_config_map.side_effect = ApiException(status=404)
        store = ConfigMapStateStore(api, namespace="ops")

        assert store.list() == []

        namespace, body = api.create_namespaced_config_map.call_args.args
        assert namespace == "ops"
        assert body.metadata.name == CONFIGMAP_NAME

    def test_other_api_errors_propagate(self, api):
        api.read_namespaced_config_map.side_effect = ApiException(status=403)

        with pytest.raises(ApiException):
            ConfigMapStateStore(api).get(StateKey("coe_cluster", "x"))

    def test_list_spans_kinds(self, api):
        state = _state()
        api.read_namespaced_config_map.return_value.data = {
            "coe_cluster.json": json.dumps({"5d12f6fd": state.to_dict()}),
            "openshift_cluster.json": json.dumps({}),
            "README": "not state",
        }

        assert ConfigMapStateStore(api).list() == [(state.key, state)]


class InMemoryConfigMapApi:
    """CoreV1Api stand-in that enforces resourceVersion on patches."""

    def __init__(self, read_delay=0.0):
        self.data = {}
        self.version = 1
        self.conflicts = 0
        self.before_patch = None
        self._read_delay = read_delay
        self._lock = threading.Lock()

    def read_namespaced_config_map(self, name, namespace):
        with self._lock:
            snapshot = SimpleNamespace(
                data=dict(self.data),
                metadata=SimpleNamespace(resource_version=str(self.version)),
            )
        time.sleep(self._read_delay)
        return snapshot

    def patch_namespaced_config_map(self, name, namespace, body):
        if self.before_patch is not None:
            hook, self.before_patch = self.before_patch, None
            hook()
        with self._lock:
            expected = body.get("metadata", {}).get("resourceVersion")
            if expected is not None and expected != str(self.version):
                self.conflicts += 1
                raise ApiException(status=409, reason="Conflict")
            self.data.update(body["data"])
            self.version += 1


class TestConfigMapStateStoreConcurrency:
    """Tests for concurrent writes to the ConfigMap store."""

    def test_parallel_puts_keep_every_record(self):
        api = InMemoryConfigMapApi(read_delay=0.01)
        store = ConfigMapStateStore(api)
        states = [_state(f"id-{i}") for i in range(8)]

        threads = [
            threading.Thread(target=store.put, args=(state.key, state)) for state in states
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(key.remote_id for key, _ in store.list()) == sorted(
            state.remote_id for state in states
        )

    def test_conflicting_writer_triggers_reread(self):
        api = InMemoryConfigMapApi()
        store = ConfigMapStateStore(api)
        other = ConfigMapStateStore(api)
        first, second = _state("id-1"), _state("id-2")

        # Another operator process writes between this store's read and patch
        api.before_patch = lambda: other.put(second.key, second)
        store.put(first.key, first)

        assert api.conflicts == 1
        assert sorted(key.remote_id for key, _ in store.list()) == ["id-1", "id-2"]

    def test_gives_up_after_repeated_conflicts(self):
        api = MagicMock()
        api.read_namespaced_config_map.return_value.data = {}
        api.patch_namespaced_config_map.side_effect = ApiException(status=409)
        state = _state()

        with pytest.raises(ApiException):
            ConfigMapStateStore(api).put(state.key, state)

        assert api.patch_namespaced_config_map.call_count == MAX_CONFLICT_RETRIES
