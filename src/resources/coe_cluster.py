"""OpenStack Magnum (container infrastructure) cluster adapter."""

import logging

from constants import KIND_COE_CLUSTER
from models import NaturalKey, RemoteShape, ResourceSpec, ValidationError
from resources.base import ResourceAdapter, compact
from schema import FieldSpec, FieldType, Schema
from validation import int_at_least, map_contains, no_empty_strings

logger = logging.getLogger(__name__)

_STRING = FieldType.STRING

# Attributes sent on create, in the names openstacksdk's Cluster resource uses
REQUEST_FIELDS = (
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
)

COMPUTED_FIELDS = (
    "status",
    "status_reason",
    "api_address",
    "coe_version",
    "stack_id",
    "project_id",
    "master_addresses",
    "node_addresses",
)

COE_CLUSTER_SCHEMA = Schema(
    {
        "name": FieldSpec(_STRING, required=True, force_new=True, validator=no_empty_strings),
        "cluster_template_id": FieldSpec(
            _STRING, required=True, force_new=True, validator=no_empty_strings
        ),
        "keypair": FieldSpec(_STRING, optional=True, computed=True, force_new=True),
        "master_count": FieldSpec(
            FieldType.INT,
            optional=True,
            force_new=True,
            default=1,
            validator=int_at_least(1),
        ),
        "node_count": FieldSpec(
            FieldType.INT, optional=True, default=1, validator=int_at_least(1)
        ),
        "flavor_id": FieldSpec(_STRING, optional=True, computed=True, force_new=True),
        "master_flavor_id": FieldSpec(_STRING, optional=True, computed=True, force_new=True),
        "labels": FieldSpec(
            FieldType.MAP,
            optional=True,
            computed=True,
            force_new=True,
            diff_suppress=map_contains,
        ),
        "create_timeout": FieldSpec(
            FieldType.INT,
            optional=True,
            force_new=True,
            default=60,
            validator=int_at_least(1),
        ),
        "discovery_url": FieldSpec(_STRING, optional=True, computed=True, force_new=True),
        "status": FieldSpec(_STRING, computed=True),
        "status_reason": FieldSpec(_STRING, computed=True),
        "api_address": FieldSpec(_STRING, computed=True),
        "coe_version": FieldSpec(_STRING, computed=True),
        "stack_id": FieldSpec(_STRING, computed=True),
        "project_id": FieldSpec(_STRING, computed=True),
        "master_addresses": FieldSpec(FieldType.LIST, computed=True, elem=_STRING),
        "node_addresses": FieldSpec(FieldType.LIST, computed=True, elem=_STRING),
    }
)


class CoeClusterAdapter(ResourceAdapter):
    """Adapter for Magnum clusters in one cloud.

    Magnum cluster names are unique per project, so the natural key's scope
    is the cloud the client is connected to.
    """

    kind = KIND_COE_CLUSTER
    schema = COE_CLUSTER_SCHEMA

    def __init__(self, cloud: str) -> None:
        self.cloud = cloud

    def natural_key(self, spec: ResourceSpec) -> NaturalKey:
        return NaturalKey(name=spec["name"], scope=self.cloud)

    def remote_id(self, key: NaturalKey) -> str:
        # Magnum looks clusters up by name or UUID alike
        return key.name

    def parse_import_id(self, identity: str) -> str:
        if not isinstance(identity, str) or not identity.strip():
            raise ValidationError("import ID must be a cluster name or UUID")
        return identity.strip()

    def expand(self, spec: ResourceSpec) -> RemoteShape:
        spec = self.schema.normalize(spec)
        return compact({field: spec.get(field) for field in REQUEST_FIELDS})

    def flatten(
        self, remote: RemoteShape, prior: ResourceSpec | None = None
    ) -> ResourceSpec:
        result = {field: remote.get(field) for field in REQUEST_FIELDS + COMPUTED_FIELDS}
        result["labels"] = dict(remote.get("labels") or {})
        result["master_addresses"] = list(remote.get("master_addresses") or [])
        result["node_addresses"] = list(remote.get("node_addresses") or [])
        return result
