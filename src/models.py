"""Domain models for the cluster reconciler.

This module defines typed data structures for reconciler concepts:
resource identity, observed state, pending remote operations and the
error taxonomy shared by every component.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# A resource's configuration as declared by the user, keyed by field name.
ResourceSpec = dict[str, Any]

# Request and response bodies exchanged with a remote control plane.
RemoteShape = dict[str, Any]


# =============================================================================
# Enums for constrained values
# =============================================================================


class Phase(Enum):
    """Lifecycle phase of a managed resource instance.

    Only ABSENT and PRESENT are ever persisted. The other phases exist for
    the duration of a blocking reconciler call or for status reporting.
    """

    ABSENT = "Absent"
    CREATING = "Creating"
    PRESENT = "Present"
    UPDATING = "Updating"
    DELETING = "Deleting"
    ERROR = "Error"


class OperationStatus(Enum):
    """Status of an asynchronous remote operation."""

    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    CANCELED = "Canceled"

    @property
    def is_terminal(self) -> bool:
        return self is not OperationStatus.RUNNING


class ConditionStatus(Enum):
    """Kubernetes condition status."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


# =============================================================================
# Dataclasses for identity and state
# =============================================================================


@dataclass(frozen=True)
class NaturalKey:
    """User-chosen identity of a resource (name + scope)."""

    name: str
    scope: str = ""

    def __str__(self) -> str:
        if self.scope:
            return f"{self.scope}/{self.name}"
        return self.name

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "scope": self.scope}

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> "NaturalKey":
        return cls(name=data.get("name", ""), scope=data.get("scope", ""))


@dataclass(frozen=True)
class StateKey:
    """State Store key: resource kind plus opaque remote ID."""

    kind: str
    remote_id: str


@dataclass
class ResourceState:
    """Last-known mapping of a resource identity to its remote object."""

    kind: str
    natural_key: NaturalKey
    remote_id: str
    attributes: ResourceSpec = field(default_factory=dict)
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def key(self) -> StateKey:
        return StateKey(self.kind, self.remote_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted record shape."""
        return {
            "kind": self.kind,
            "naturalKey": self.natural_key.to_dict(),
            "remoteId": self.remote_id,
            "lastObservedSpec": self.attributes,
            "tags": self.tags,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResourceState":
        """Create from a persisted record."""
        return cls(
            kind=data.get("kind", ""),
            natural_key=NaturalKey.from_dict(data.get("naturalKey") or {}),
            remote_id=data.get("remoteId", ""),
            attributes=dict(data.get("lastObservedSpec") or {}),
            tags=dict(data.get("tags") or {}),
        )


@dataclass
class PendingOperation:
    """Handle to an in-flight asynchronous remote mutation."""

    handle: str
    action: str
    remote_id: str
    status: OperationStatus = OperationStatus.RUNNING
    error: Any = None


@dataclass(frozen=True)
class OperationReport:
    """Result of a single status poll."""

    status: OperationStatus
    resource: RemoteShape | None = None
    error: Any = None
    retry_after: float | None = None


@dataclass(frozen=True)
class Submission:
    """What a remote mutation returned: a result, an operation, or nothing."""

    resource: RemoteShape | None = None
    operation: PendingOperation | None = None


@dataclass(frozen=True)
class ImportRequest:
    """External identity of a pre-existing remote resource to adopt."""

    kind: str
    identity: str


@dataclass(frozen=True)
class FieldChange:
    """A single planned difference between observed and desired values."""

    path: str
    old: Any
    new: Any
    force_new: bool = False


# =============================================================================
# Exceptions
# =============================================================================


class OperatorError(Exception):
    """Base exception for operator errors."""

    pass


class ConfigurationError(OperatorError):
    """Invalid or missing configuration."""

    pass


class ResourceNotFoundError(OperatorError):
    """The remote client could not find the requested object."""

    pass


class ReconcileError(OperatorError):
    """Error surfaced by a reconcile operation.

    Carries the resource kind and natural key so every failure can be traced
    back to the instance it concerns.
    """

    def __init__(
        self,
        message: str,
        kind: str | None = None,
        natural_key: NaturalKey | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.natural_key = natural_key

    def attach(self, kind: str, natural_key: NaturalKey | None) -> None:
        """Fill in resource context that the raising layer did not know."""
        if self.kind is None:
            self.kind = kind
        if self.natural_key is None:
            self.natural_key = natural_key

    def __str__(self) -> str:
        if self.kind is None:
            return self.message
        return f"{self.kind} {self.natural_key or '?'}: {self.message}"


class ValidationError(ReconcileError):
    """The input spec is invalid. Never retried."""

    def __init__(
        self,
        errors: list[str] | str,
        kind: str | None = None,
        natural_key: NaturalKey | None = None,
    ) -> None:
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("; ".join(self.errors), kind, natural_key)


class AlreadyExistsError(ReconcileError):
    """A remote object already exists and must be imported first."""

    def __init__(
        self,
        remote_id: str,
        kind: str | None = None,
        natural_key: NaturalKey | None = None,
    ) -> None:
        self.remote_id = remote_id
        super().__init__(
            f"a resource with ID {remote_id!r} already exists - "
            "it needs to be imported to be managed",
            kind,
            natural_key,
        )


class NotFoundError(ReconcileError):
    """No remote object exists for the given identity."""

    pass


class OperationTimeoutError(ReconcileError):
    """A remote operation did not finish before its deadline."""

    pass


class OperationCancelledError(ReconcileError):
    """Waiting was cancelled locally; the remote operation continues."""

    pass


class RemoteOperationFailedError(ReconcileError):
    """A remote operation reached a failed terminal state."""

    def __init__(
        self,
        message: str,
        payload: Any = None,
        kind: str | None = None,
        natural_key: NaturalKey | None = None,
    ) -> None:
        super().__init__(message, kind, natural_key)
        self.payload = payload


class TransientNetworkError(ReconcileError):
    """Communication with the remote API failed; the call may be retried."""

    pass
