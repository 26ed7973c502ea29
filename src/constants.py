"""Constants used across the reconciler."""

# Tag used to identify reconciler-managed resources
MANAGED_BY_TAG = "managed-by"
MANAGED_BY_VALUE = "cluster-reconciler"

# Custom resource coordinates served by the operator
CRD_GROUP = "reconciler.cloud"
CRD_VERSION = "v1alpha1"

FINALIZER = f"{CRD_GROUP}/cluster-reconciler"

# Kinds handled by the built-in adapters
KIND_OPENSHIFT_CLUSTER = "openshift_cluster"
KIND_COE_CLUSTER = "coe_cluster"
