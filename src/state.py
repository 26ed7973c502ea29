"""Shared operator state - thread-safe singleton for clients and reconcilers."""

import os
import threading
from dataclasses import dataclass, field

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config

from config import ReconcilerConfig
from constants import KIND_COE_CLUSTER
from models import ConfigurationError
from openstack_client import OpenStackClient
from reconciler import Reconciler
from resources.coe_cluster import CoeClusterAdapter
from state_store import ConfigMapStateStore, StateStore


@dataclass
class OperatorState:
    """Thread-safe operator state container.

    Holds the clients and reconcilers shared by every handler:
    - OpenStack client
    - Kubernetes CoreV1Api client
    - State Store
    - One Reconciler per resource kind

    Handlers should use the global `state` instance rather than building
    their own. `stop_event` is set on shutdown so in-flight operation waits
    return promptly.
    """

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _os_client: OpenStackClient | None = field(default=None, repr=False)
    _store: StateStore | None = field(default=None, repr=False)
    _config: ReconcilerConfig | None = field(default=None, repr=False)
    _reconcilers: dict[str, Reconciler] = field(default_factory=dict, repr=False)
    _k8s_core_api: k8s_client.CoreV1Api | None = field(default=None, repr=False)
    _k8s_configured: bool = field(default=False, repr=False)
    stop_event: threading.Event = field(default_factory=threading.Event, repr=False)

    def _ensure_k8s_config(self) -> None:
        """Ensure Kubernetes configuration is loaded (must hold lock)."""
        if not self._k8s_configured:
            try:
                k8s_config.load_incluster_config()
            except k8s_config.ConfigException:
                k8s_config.load_kube_config()
            self._k8s_configured = True

    def _get_k8s_core_api(self) -> k8s_client.CoreV1Api:
        """Get or create the CoreV1Api client (must hold lock)."""
        self._ensure_k8s_config()
        if self._k8s_core_api is None:
            self._k8s_core_api = k8s_client.CoreV1Api()
        return self._k8s_core_api

    def get_openstack_client(self) -> OpenStackClient:
        """Get or create the OpenStack client (thread-safe)."""
        with self._lock:
            if self._os_client is None:
                self._os_client = OpenStackClient()
            return self._os_client

    def get_k8s_core_api(self) -> k8s_client.CoreV1Api:
        """Get or create the Kubernetes CoreV1Api client (thread-safe)."""
        with self._lock:
            return self._get_k8s_core_api()

    def get_store(self) -> StateStore:
        """Get or create the ConfigMap-backed State Store (thread-safe)."""
        with self._lock:
            if self._store is None:
                self._store = ConfigMapStateStore(
                    self._get_k8s_core_api(),
                    namespace=os.environ.get("STATE_CONFIGMAP_NAMESPACE") or None,
                )
            return self._store

    def get_config(self) -> ReconcilerConfig:
        """Read reconciler configuration once, on first use."""
        with self._lock:
            if self._config is None:
                self._config = ReconcilerConfig.from_env()
            return self._config

    def get_reconciler(self, kind: str) -> Reconciler:
        """Get or create the Reconciler for a resource kind."""
        if kind != KIND_COE_CLUSTER:
            raise ConfigurationError(f"no reconciler is configured for {kind!r}")

        client = self.get_openstack_client()
        store = self.get_store()
        config = self.get_config()
        with self._lock:
            if kind not in self._reconcilers:
                self._reconcilers[kind] = Reconciler(
                    CoeClusterAdapter(client.cloud_name), client, store, config
                )
            return self._reconcilers[kind]

    def close(self) -> None:
        """Stop in-flight waits and close all connections."""
        self.stop_event.set()
        with self._lock:
            self._reconcilers.clear()
            if self._os_client is not None:
                self._os_client.close()
                self._os_client = None


# Global operator state singleton
state = OperatorState()


def get_reconciler(kind: str) -> Reconciler:
    """Get the shared Reconciler for a resource kind."""
    return state.get_reconciler(kind)


def get_store() -> StateStore:
    """Get the shared State Store."""
    return state.get_store()
