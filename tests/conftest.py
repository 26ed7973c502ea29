"""Shared fixtures: in-memory remote control planes for reconciler tests."""

import copy
import itertools

import pytest

from config import ReconcilerConfig
from models import (
    OperationReport,
    OperationStatus,
    PendingOperation,
    ResourceNotFoundError,
    Submission,
)
from ratelimit import reset_rate_limiter
from reconciler import Reconciler
from resources.coe_cluster import CoeClusterAdapter
from resources.openshift_cluster import OpenShiftClusterAdapter
from state_store import MemoryStateStore

SUBSCRIPTION_ID = "00000000-0000-0000-0000-000000000001"


@pytest.fixture(autouse=True)
def unthrottled(monkeypatch):
    """Disable request throttling so tests never sleep in the rate limiter."""
    monkeypatch.setenv("OPENSTACK_REQUESTS_PER_SECOND", "0")
    reset_rate_limiter()
    yield
    reset_rate_limiter()


class FakeRemote:
    """In-memory remote whose mutations complete after a number of polls.

    Objects appear as soon as a mutation is accepted, the way long-running
    cloud operations usually expose a half-built resource.
    """

    def __init__(self, polls_to_finish=1, final_status=OperationStatus.SUCCEEDED):
        self.objects = {}
        self.creates = []
        self.deletes = []
        self.polls = {}
        self.polls_to_finish = polls_to_finish
        self.final_status = final_status
        self._handles = itertools.count(1)

    def _operation(self, action, remote_id):
        handle = f"op-{next(self._handles)}"
        self.polls[handle] = 0
        return PendingOperation(handle=handle, action=action, remote_id=remote_id)

    def _lookup(self, remote_id):
        return remote_id

    def _store(self, remote_id, request):
        raise NotImplementedError

    def create(self, remote_id, request):
        self.creates.append((remote_id, copy.deepcopy(request)))
        key = self._lookup(remote_id)
        action = "update" if key in self.objects else "create"
        stored_id = self._store(key, request)
        return Submission(operation=self._operation(action, stored_id))

    def get(self, remote_id):
        key = self._lookup(remote_id)
        obj = self.objects.get(key)
        return copy.deepcopy(obj) if obj is not None else None

    def delete(self, remote_id):
        key = self._lookup(remote_id)
        if key not in self.objects:
            raise ResourceNotFoundError(remote_id)
        self.deletes.append(remote_id)
        del self.objects[key]
        return Submission(operation=self._operation("delete", remote_id))

    def poll_status(self, operation):
        self.polls[operation.handle] += 1
        if self.polls[operation.handle] < self.polls_to_finish:
            return OperationReport(status=OperationStatus.RUNNING)
        error = None
        if self.final_status is not OperationStatus.SUCCEEDED:
            error = {"code": "ProvisioningFailed"}
        return OperationReport(status=self.final_status, error=error)


class FakeOpenShiftRemote(FakeRemote):
    """Echoes ARM requests back with computed properties filled in.

    Like the real API, it never returns the AAD client secret.
    """

    def _store(self, remote_id, request):
        obj = copy.deepcopy(request)
        obj["id"] = remote_id
        props = obj["properties"]
        name, location = obj["name"], obj["location"]
        props["clusterVersion"] = "v3.11.154"
        props["fqdn"] = f"{name}-master.{location}.cloudapp.azure.com"
        props["publicHostname"] = f"openshift.{name}.{location}.cloudapp.azure.com"
        props["networkProfile"]["vnetId"] = f"{remote_id}/virtualNetworks/{name}-vnet"
        for profile in props["routerProfiles"]:
            profile["publicSubdomain"] = f"apps.{name}.{location}.cloudapp.azure.com"
            profile["fqdn"] = f"{name}-router.{location}.cloudapp.azure.com"
        for idp in (props.get("authProfile") or {}).get("identityProviders", []):
            idp["provider"].pop("secret", None)
        # Agent pools come back in no particular order
        props["agentPoolProfiles"] = list(reversed(props["agentPoolProfiles"]))
        self.objects[remote_id] = obj
        return remote_id


class FakeMagnumRemote(FakeRemote):
    """Magnum-like remote: clusters are found by name or UUID."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._ids = itertools.count(1)

    def _lookup(self, remote_id):
        for cluster_id, obj in self.objects.items():
            if remote_id in (cluster_id, obj["name"]):
                return cluster_id
        return remote_id

    def _store(self, key, request):
        existing = self.objects.get(key)
        if existing is not None:
            existing["node_count"] = request["node_count"]
            return key
        cluster_id = f"5d12f6fd-a196-4bf0-ae4c-{next(self._ids):012d}"
        obj = copy.deepcopy(request)
        obj.update(
            id=cluster_id,
            status="CREATE_COMPLETE",
            status_reason="Stack CREATE completed successfully",
            api_address="https://10.0.0.5:6443",
            coe_version="v1.27.4",
            stack_id="f3e6c1a2-0000-4000-8000-000000000000",
            project_id="b9f3e8c1d2a34e56",
            master_addresses=["10.0.0.5"],
            node_addresses=["10.0.0.6"],
            labels={**(request.get("labels") or {}), "kube_tag": "v1.27.4"},
            keypair=request.get("keypair", "template-key"),
            flavor_id=request.get("flavor_id", "m1.medium"),
            master_flavor_id=request.get("master_flavor_id", "m1.medium"),
        )
        self.objects[cluster_id] = obj
        return cluster_id


@pytest.fixture
def fast_config():
    return ReconcilerConfig(poll_interval=0.0, operation_timeout=60.0)


@pytest.fixture
def openshift_adapter():
    return OpenShiftClusterAdapter(SUBSCRIPTION_ID)


@pytest.fixture
def openshift_remote():
    return FakeOpenShiftRemote(polls_to_finish=2)


@pytest.fixture
def store():
    return MemoryStateStore()


@pytest.fixture
def openshift_reconciler(openshift_adapter, openshift_remote, store, fast_config):
    return Reconciler(openshift_adapter, openshift_remote, store, fast_config)


@pytest.fixture
def magnum_remote():
    return FakeMagnumRemote()


@pytest.fixture
def coe_reconciler(magnum_remote, store, fast_config):
    return Reconciler(CoeClusterAdapter("openstack"), magnum_remote, store, fast_config)


@pytest.fixture
def c1_spec():
    return {
        "name": "c1",
        "resource_group": "rg1",
        "region": "eastus",
        "pool": [
            {"name": "master", "count": 3},
            {"name": "infra", "count": 3},
            {"name": "compute", "count": 4},
        ],
    }


@pytest.fixture
def coe_spec():
    return {
        "name": "k8s-prod",
        "cluster_template_id": "0562d357-8641-4759-8fed-8173f02c9633",
        "keypair": "ops",
        "master_count": 3,
        "node_count": 2,
    }
