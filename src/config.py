"""Reconciler configuration.

Feature flags are explicit values handed to each Reconciler at construction.
They are read from the environment once, by the operator, never consulted
as ambient globals from inside reconcile calls.
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

from utils import parse_bool, parse_float

logger = logging.getLogger(__name__)

MIN_POLL_INTERVAL = 1.0


@dataclass(frozen=True)
class ReconcilerConfig:
    """Policy and timing knobs for a Reconciler.

    Attributes:
        require_import: Fail with AlreadyExistsError when a create finds an
            existing remote object, instead of adopting it.
        allow_replace: Delete and recreate when a force-new field changes.
        poll_interval: Seconds between status polls when the remote does
            not suggest an interval.
        operation_timeout: Seconds to wait for one remote operation.
    """

    require_import: bool = False
    allow_replace: bool = True
    poll_interval: float = 15.0
    operation_timeout: float = 5400.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ReconcilerConfig":
        """Build configuration from environment variables.

        Configuration via environment variables:
            RECONCILER_REQUIRE_IMPORT: Refuse to adopt existing objects (default: false)
            RECONCILER_ALLOW_REPLACE: Recreate on force-new changes (default: true)
            RECONCILER_POLL_INTERVAL: Seconds between polls (default: 15, minimum: 1)
            RECONCILER_OPERATION_TIMEOUT: Seconds per operation (default: 5400)
        """
        env = os.environ if environ is None else environ
        config = cls(
            require_import=parse_bool(
                env.get("RECONCILER_REQUIRE_IMPORT", "false"),
                "RECONCILER_REQUIRE_IMPORT",
            ),
            allow_replace=parse_bool(
                env.get("RECONCILER_ALLOW_REPLACE", "true"),
                "RECONCILER_ALLOW_REPLACE",
            ),
            poll_interval=parse_float(
                env.get("RECONCILER_POLL_INTERVAL", "15"),
                "RECONCILER_POLL_INTERVAL",
                minimum=MIN_POLL_INTERVAL,
            ),
            operation_timeout=parse_float(
                env.get("RECONCILER_OPERATION_TIMEOUT", "5400"),
                "RECONCILER_OPERATION_TIMEOUT",
            ),
        )
        logger.info("Reconciler configuration: %s", config)
        return config
