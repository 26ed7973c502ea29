"""Remote-State Adapter contract.

Each resource kind supplies one adapter: the schema for its desired state
and two pure mappings between that state and the remote API's shapes. This
is the only place per-kind code lives; the Reconciler is generic.
"""

from abc import ABC, abstractmethod
from typing import Any, ClassVar

from models import NaturalKey, RemoteShape, ResourceSpec
from schema import Schema


def compact(values: dict[str, Any]) -> dict[str, Any]:
    """Drop keys whose value is None."""
    return {k: v for k, v in values.items() if v is not None}


class ResourceAdapter(ABC):
    """Translates between a kind's ResourceSpec and remote request/response shapes.

    expand and flatten must be side-effect free. flatten(expand(s)) agrees
    with s on every field the user supplied.
    """

    kind: ClassVar[str]
    schema: ClassVar[Schema]
    # Field holding the natural key's scope, if the kind has one
    scope_field: ClassVar[str | None] = None

    def natural_key(self, spec: ResourceSpec) -> NaturalKey:
        """Return the natural key (name + scope) of a spec."""
        scope = spec.get(self.scope_field, "") if self.scope_field else ""
        return NaturalKey(name=spec["name"], scope=scope)

    def tags_of(self, spec: ResourceSpec) -> dict[str, str]:
        return dict(spec.get("tags") or {})

    def remote_id_of(self, remote: RemoteShape) -> str:
        """Return the opaque remote ID from a remote response."""
        return remote["id"]

    @abstractmethod
    def remote_id(self, key: NaturalKey) -> str:
        """Return the identity used to look up a resource by natural key."""
        ...

    @abstractmethod
    def parse_import_id(self, identity: str) -> str:
        """Validate an operator-supplied identity and return the remote ID.

        Raises:
            ValidationError: If the identity is malformed for this kind.
        """
        ...

    @abstractmethod
    def expand(self, spec: ResourceSpec) -> RemoteShape:
        """Build a remote request from a spec.

        Raises:
            ValidationError: If the spec violates field or cross-field rules.
        """
        ...

    @abstractmethod
    def flatten(
        self, remote: RemoteShape, prior: ResourceSpec | None = None
    ) -> ResourceSpec:
        """Build a spec, computed fields included, from a remote response.

        prior, when given, is the previous spec; block lists the remote
        returns unordered follow its element order.
        """
        ...
