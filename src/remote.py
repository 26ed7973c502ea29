"""Contract for remote control-plane clients.

The reconciler only ever talks to a remote API through this protocol. A
client translates its SDK's failures at this boundary: missing objects on
delete become ResourceNotFoundError, communication failures become
TransientNetworkError, and rejected requests become
RemoteOperationFailedError.
"""

from typing import Protocol

from models import OperationReport, PendingOperation, RemoteShape, Submission


class RemoteClient(Protocol):
    """Protocol for remote control-plane clients."""

    def create(self, remote_id: str, request: RemoteShape) -> Submission:
        """Create or update the object identified by remote_id (upsert)."""
        ...

    def get(self, remote_id: str) -> RemoteShape | None:
        """Fetch the object. Returns None if it does not exist."""
        ...

    def delete(self, remote_id: str) -> Submission:
        """Delete the object. Raises ResourceNotFoundError if it is gone."""
        ...

    def poll_status(self, operation: PendingOperation) -> OperationReport:
        """Fetch the current status of an operation without re-issuing it."""
        ...
