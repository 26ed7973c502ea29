"""Kopf handlers for reconciled cluster resources.

This package contains handlers for:
- CoeCluster (OpenStack Magnum clusters)

All handlers follow the same patterns:
- Create/update/delete via Kopf decorators, delegating to a Reconciler
- Status tracking via patch.status
- A timer that refreshes state and recreates clusters deleted out-of-band
"""

# Import handlers to register them with Kopf
from handlers.coe_cluster import *  # noqa: F401, F403
