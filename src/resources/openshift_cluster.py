"""Managed OpenShift cluster adapter.

Maps the openshift_cluster desired state onto ARM-shaped
openShiftManagedClusters request and response bodies.
"""

import ipaddress
import logging
from typing import Any

from constants import KIND_OPENSHIFT_CLUSTER, MANAGED_BY_TAG, MANAGED_BY_VALUE
from models import NaturalKey, RemoteShape, ResourceSpec, ValidationError
from resources.base import ResourceAdapter, compact
from schema import FieldSpec, FieldType, Schema, order_blocks
from utils import normalize_location
from validation import (
    agent_pool_name,
    case_difference,
    cidr,
    int_at_least,
    location_difference,
    no_empty_strings,
    parse_resource_id,
    resource_group_name,
    resource_id,
    string_in,
    uuid_or_empty,
    uuid_value,
)

logger = logging.getLogger(__name__)

PROVIDER = "Microsoft.ContainerService"
RESOURCE_TYPE = "openShiftManagedClusters"

MASTER_POOL = "master"
AGENT_ROLES = ("infra", "compute")

DEFAULT_OPENSHIFT_VERSION = "v3.11"
DEFAULT_VNET_CIDR = "10.0.0.0/8"
DEFAULT_VM_SIZE = "Standard_D4s_v3"
DEFAULT_ROUTER_PROFILE = "default"
AAD_PROVIDER_NAME = "Azure AD"
AAD_PROVIDER_KIND = "AADIdentityProvider"

_STRING = FieldType.STRING

NETWORK_PROFILE_SCHEMA = Schema(
    {
        "vnet_cidr": FieldSpec(
            _STRING, optional=True, force_new=True, default=DEFAULT_VNET_CIDR, validator=cidr
        ),
        "vnet_id": FieldSpec(_STRING, computed=True),
        "peer_vnet_id": FieldSpec(_STRING, optional=True, validator=resource_id),
    }
)

ROUTER_PROFILE_SCHEMA = Schema(
    {
        "name": FieldSpec(
            _STRING, optional=True, computed=True, validator=no_empty_strings
        ),
        "public_subdomain": FieldSpec(_STRING, computed=True),
        "fqdn": FieldSpec(_STRING, computed=True),
    }
)

POOL_SCHEMA = Schema(
    {
        "name": FieldSpec(_STRING, required=True, validator=agent_pool_name),
        "role": FieldSpec(
            _STRING,
            optional=True,
            computed=True,
            force_new=True,
            validator=string_in(AGENT_ROLES),
        ),
        "count": FieldSpec(
            FieldType.INT, optional=True, default=3, validator=int_at_least(1)
        ),
        "vm_size": FieldSpec(
            _STRING,
            optional=True,
            force_new=True,
            default=DEFAULT_VM_SIZE,
            validator=no_empty_strings,
            diff_suppress=case_difference,
        ),
        "subnet_cidr": FieldSpec(
            _STRING, optional=True, computed=True, force_new=True, validator=cidr
        ),
        "os_type": FieldSpec(
            _STRING,
            optional=True,
            force_new=True,
            default="Linux",
            validator=string_in(["Linux", "Windows"], ignore_case=True),
            diff_suppress=case_difference,
        ),
    }
)

AAD_SCHEMA = Schema(
    {
        "client_id": FieldSpec(_STRING, required=True, force_new=True, validator=uuid_value),
        "client_secret": FieldSpec(
            _STRING,
            required=True,
            force_new=True,
            sensitive=True,
            validator=no_empty_strings,
        ),
        "tenant_id": FieldSpec(
            _STRING, optional=True, computed=True, force_new=True, validator=uuid_or_empty
        ),
        "customer_admin_group_id": FieldSpec(
            _STRING, optional=True, validator=no_empty_strings
        ),
    }
)

PURCHASE_PLAN_SCHEMA = Schema(
    {
        "name": FieldSpec(_STRING, computed=True),
        "product": FieldSpec(_STRING, computed=True),
        "promotion_code": FieldSpec(_STRING, computed=True),
        "publisher": FieldSpec(_STRING, computed=True),
    }
)

CLUSTER_SCHEMA = Schema(
    {
        "name": FieldSpec(_STRING, required=True, force_new=True, validator=no_empty_strings),
        "resource_group": FieldSpec(
            _STRING, required=True, force_new=True, validator=resource_group_name
        ),
        "region": FieldSpec(
            _STRING,
            required=True,
            force_new=True,
            validator=no_empty_strings,
            diff_suppress=location_difference,
        ),
        "openshift_version": FieldSpec(
            _STRING,
            optional=True,
            default=DEFAULT_OPENSHIFT_VERSION,
            validator=no_empty_strings,
        ),
        "cluster_version": FieldSpec(_STRING, computed=True),
        "public_hostname": FieldSpec(_STRING, computed=True),
        "fqdn": FieldSpec(_STRING, computed=True),
        "purchase_plan": FieldSpec(
            FieldType.BLOCK_LIST, computed=True, max_items=1, elem=PURCHASE_PLAN_SCHEMA
        ),
        "network_profile": FieldSpec(
            FieldType.BLOCK_LIST,
            optional=True,
            computed=True,
            force_new=True,
            max_items=1,
            elem=NETWORK_PROFILE_SCHEMA,
        ),
        "router_profile": FieldSpec(
            FieldType.BLOCK_LIST,
            optional=True,
            computed=True,
            max_items=1,
            elem=ROUTER_PROFILE_SCHEMA,
        ),
        "pool": FieldSpec(
            FieldType.BLOCK_LIST, required=True, elem=POOL_SCHEMA, sort_key="name"
        ),
        "azure_active_directory": FieldSpec(
            FieldType.BLOCK_LIST,
            optional=True,
            computed=True,
            force_new=True,
            max_items=1,
            elem=AAD_SCHEMA,
        ),
        "tags": FieldSpec(FieldType.MAP, optional=True),
    }
)


def _pool_role(pool: dict[str, Any]) -> str:
    if pool.get("role"):
        return pool["role"]
    return pool["name"] if pool["name"] in AGENT_ROLES else "compute"


class OpenShiftClusterAdapter(ResourceAdapter):
    """Adapter for managed OpenShift clusters in one subscription."""

    kind = KIND_OPENSHIFT_CLUSTER
    schema = CLUSTER_SCHEMA
    scope_field = "resource_group"

    def __init__(self, subscription_id: str) -> None:
        self.subscription_id = subscription_id

    def remote_id(self, key: NaturalKey) -> str:
        return (
            f"/subscriptions/{self.subscription_id}/resourceGroups/{key.scope}"
            f"/providers/{PROVIDER}/{RESOURCE_TYPE}/{key.name}"
        )

    def parse_import_id(self, identity: str) -> str:
        try:
            parsed = parse_resource_id(identity)
        except ValueError as e:
            raise ValidationError(f"import ID: {e}") from e

        if parsed.provider.lower() != PROVIDER.lower() or not parsed.path.get(
            RESOURCE_TYPE
        ):
            raise ValidationError(
                f"import ID {identity!r} is not a {PROVIDER}/{RESOURCE_TYPE} resource"
            )
        if parsed.subscription_id.lower() != self.subscription_id.lower():
            raise ValidationError(
                f"import ID {identity!r} belongs to subscription "
                f"{parsed.subscription_id}, not {self.subscription_id}"
            )
        return identity

    # -------------------------------------------------------------------------
    # expand
    # -------------------------------------------------------------------------

    def expand(self, spec: ResourceSpec) -> RemoteShape:
        spec = self.schema.normalize(spec)
        errors = self._cross_field_errors(spec)
        if errors:
            raise ValidationError(errors)

        pools = spec["pool"]
        master = next(p for p in pools if p["name"] == MASTER_POOL)
        properties: dict[str, Any] = {
            "openShiftVersion": spec["openshift_version"],
            "networkProfile": self._expand_network_profile(spec),
            "routerProfiles": self._expand_router_profiles(spec),
            "masterPoolProfile": self._expand_pool(master),
            "agentPoolProfiles": [
                {**self._expand_pool(p), "role": _pool_role(p)}
                for p in pools
                if p["name"] != MASTER_POOL
            ],
        }

        auth = spec.get("azure_active_directory")
        if auth:
            properties["authProfile"] = self._expand_auth_profile(auth[0])

        return {
            "id": self.remote_id(self.natural_key(spec)),
            "name": spec["name"],
            "type": f"{PROVIDER}/{RESOURCE_TYPE}",
            "location": normalize_location(spec["region"]),
            "tags": {**self.tags_of(spec), MANAGED_BY_TAG: MANAGED_BY_VALUE},
            "properties": properties,
        }

    def _cross_field_errors(self, spec: ResourceSpec) -> list[str]:
        errors: list[str] = []
        pools = spec["pool"]

        names = [p["name"] for p in pools]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            errors.append(f"pool: duplicate pool names {duplicates}")

        masters = [p for p in pools if p["name"] == MASTER_POOL]
        if len(masters) != 1:
            errors.append(f"pool: exactly one pool named {MASTER_POOL!r} is required")
        elif masters[0].get("role"):
            errors.append(f"pool.{MASTER_POOL}: role cannot be set on the master pool")

        roles = {_pool_role(p) for p in pools if p["name"] != MASTER_POOL}
        for role in AGENT_ROLES:
            if role not in roles:
                errors.append(f"pool: at least one pool with role {role!r} is required")

        vnet_cidr = DEFAULT_VNET_CIDR
        if spec.get("network_profile"):
            vnet_cidr = spec["network_profile"][0]["vnet_cidr"]
        vnet = ipaddress.ip_network(vnet_cidr)

        subnets: list[tuple[str, Any]] = []
        for pool in pools:
            if not pool.get("subnet_cidr"):
                continue
            subnet = ipaddress.ip_network(pool["subnet_cidr"])
            if subnet.version != vnet.version or not subnet.subnet_of(vnet):
                errors.append(
                    f"pool.{pool['name']}.subnet_cidr: {subnet} is not inside the "
                    f"virtual network {vnet}"
                )
            for other_name, other in subnets:
                if subnet.version == other.version and subnet.overlaps(other):
                    errors.append(
                        f"pool.{pool['name']}.subnet_cidr: {subnet} overlaps pool "
                        f"{other_name!r} ({other})"
                    )
            subnets.append((pool["name"], subnet))

        return errors

    @staticmethod
    def _expand_pool(pool: dict[str, Any]) -> dict[str, Any]:
        return compact(
            {
                "name": pool["name"],
                "count": pool["count"],
                "vmSize": pool["vm_size"],
                "subnetCidr": pool.get("subnet_cidr"),
                "osType": pool["os_type"],
            }
        )

    @staticmethod
    def _expand_network_profile(spec: ResourceSpec) -> dict[str, Any]:
        profiles = spec.get("network_profile") or [{"vnet_cidr": DEFAULT_VNET_CIDR}]
        profile = profiles[0]
        return compact(
            {"vnetCidr": profile["vnet_cidr"], "peerVnetId": profile.get("peer_vnet_id")}
        )

    @staticmethod
    def _expand_router_profiles(spec: ResourceSpec) -> list[dict[str, Any]]:
        profiles = spec.get("router_profile") or [{}]
        return [{"name": p.get("name") or DEFAULT_ROUTER_PROFILE} for p in profiles]

    @staticmethod
    def _expand_auth_profile(auth: dict[str, Any]) -> dict[str, Any]:
        provider = compact(
            {
                "kind": AAD_PROVIDER_KIND,
                "clientId": auth["client_id"],
                "secret": auth["client_secret"],
                "tenantId": auth.get("tenant_id"),
                "customerAdminGroupId": auth.get("customer_admin_group_id"),
            }
        )
        return {"identityProviders": [{"name": AAD_PROVIDER_NAME, "provider": provider}]}

    # -------------------------------------------------------------------------
    # flatten
    # -------------------------------------------------------------------------

    def flatten(
        self, remote: RemoteShape, prior: ResourceSpec | None = None
    ) -> ResourceSpec:
        parsed = parse_resource_id(remote["id"])
        props = remote.get("properties") or {}
        tags = dict(remote.get("tags") or {})
        tags.pop(MANAGED_BY_TAG, None)

        pools = []
        if props.get("masterPoolProfile"):
            pools.append(self._flatten_pool(props["masterPoolProfile"]))
        for profile in props.get("agentPoolProfiles") or []:
            pools.append(self._flatten_pool(profile))

        return {
            "name": remote.get("name") or parsed.path.get(RESOURCE_TYPE),
            "resource_group": parsed.resource_group,
            "region": normalize_location(remote.get("location") or ""),
            "openshift_version": props.get("openShiftVersion"),
            "cluster_version": props.get("clusterVersion"),
            "public_hostname": props.get("publicHostname"),
            "fqdn": props.get("fqdn"),
            "purchase_plan": self._flatten_purchase_plan(remote.get("plan")),
            "network_profile": self._flatten_network_profile(props.get("networkProfile")),
            "router_profile": [
                compact(
                    {
                        "name": p.get("name"),
                        "public_subdomain": p.get("publicSubdomain"),
                        "fqdn": p.get("fqdn"),
                    }
                )
                for p in props.get("routerProfiles") or []
            ],
            "pool": order_blocks(pools, "name", (prior or {}).get("pool")),
            "azure_active_directory": self._flatten_auth_profile(props.get("authProfile")),
            "tags": tags,
        }

    @staticmethod
    def _flatten_pool(profile: dict[str, Any]) -> dict[str, Any]:
        return compact(
            {
                "name": profile.get("name"),
                "role": profile.get("role"),
                "count": profile.get("count"),
                "vm_size": profile.get("vmSize"),
                "subnet_cidr": profile.get("subnetCidr"),
                "os_type": profile.get("osType"),
            }
        )

    @staticmethod
    def _flatten_purchase_plan(plan: dict[str, Any] | None) -> list[dict[str, Any]]:
        if not plan:
            return []
        return [
            compact(
                {
                    "name": plan.get("name"),
                    "product": plan.get("product"),
                    "promotion_code": plan.get("promotionCode"),
                    "publisher": plan.get("publisher"),
                }
            )
        ]

    @staticmethod
    def _flatten_network_profile(profile: dict[str, Any] | None) -> list[dict[str, Any]]:
        if not profile:
            return []
        return [
            compact(
                {
                    "vnet_cidr": profile.get("vnetCidr"),
                    "vnet_id": profile.get("vnetId"),
                    "peer_vnet_id": profile.get("peerVnetId"),
                }
            )
        ]

    @staticmethod
    def _flatten_auth_profile(profile: dict[str, Any] | None) -> list[dict[str, Any]]:
        for idp in (profile or {}).get("identityProviders") or []:
            provider = idp.get("provider") or {}
            if provider.get("kind") != AAD_PROVIDER_KIND:
                continue
            # The API does not return the secret; the reconciler carries it over
            return [
                compact(
                    {
                        "client_id": provider.get("clientId"),
                        "client_secret": provider.get("secret") or None,
                        "tenant_id": provider.get("tenantId"),
                        "customer_admin_group_id": provider.get("customerAdminGroupId"),
                    }
                )
            ]
        return []
