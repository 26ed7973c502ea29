"""Operator entrypoint: kopf startup/cleanup hooks and handler registration."""

import logging
import os
import sys
from pathlib import Path
from typing import Any

# Add src directory to path for imports when run as script by Kopf
_src_dir = Path(__file__).parent
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

import kopf
from prometheus_client import start_http_server

from constants import FINALIZER
from metrics import init_metrics, set_operator_info
from state import state

# Import resource handlers (registers with Kopf)
import handlers  # noqa: F401
from handlers.coe_cluster import RESOURCE as COE_CLUSTER_RESOURCE

logger = logging.getLogger(__name__)

# Operator version
OPERATOR_VERSION = "0.1.0"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **_: Any) -> None:
    """Configure operator settings on startup."""
    # Reduce logging noise
    settings.posting.level = logging.WARNING
    settings.persistence.finalizer = FINALIZER
    # Watch one namespace when WATCH_NAMESPACE is set, otherwise cluster-wide
    watch_namespace = os.environ.get("WATCH_NAMESPACE", "")
    if watch_namespace:
        settings.watching.namespaces = [watch_namespace]
    else:
        settings.watching.clusterwide = True

    metrics_port = int(os.environ.get("METRICS_PORT", "9090"))
    try:
        start_http_server(metrics_port)
        logger.info("Prometheus metrics server started on port %d", metrics_port)
    except OSError as e:
        logger.warning("Failed to start metrics server on port %d: %s", metrics_port, e)

    cloud_name = os.environ.get("OS_CLOUD", "openstack")
    init_metrics([COE_CLUSTER_RESOURCE])
    set_operator_info(OPERATOR_VERSION, cloud_name)

    # Fail at startup, not on the first event, when configuration is invalid
    state.get_config()

    logger.info("Cluster reconciler started (version %s)", OPERATOR_VERSION)


@kopf.on.cleanup()
def cleanup(**_: Any) -> None:
    """Cancel in-flight operation waits and close clients on shutdown."""
    logger.info("Cluster reconciler shutting down")
    state.close()


def main() -> None:
    """Run the operator outside of `kopf run`."""
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(), format=LOG_FORMAT
    )
    watch_namespace = os.environ.get("WATCH_NAMESPACE", "")
    kopf.run(
        clusterwide=not watch_namespace,
        namespaces=[watch_namespace] if watch_namespace else (),
    )


if __name__ == "__main__":
    main()
